"""
Karyotype and row tests
Tests bodies, gender, special markers, clone separation and row types
"""

import pytest
from parsing import KaryotypeParser
from syntax_tree import (
  RowTypeI, RowTypeII, InvalidRow, KaryotypeBody, NonclonalBody,
  IdemEvent, StemlineEvent, SidelineEvent,
)


def messages(result):
  return [d.message for d in result.diagnostics]


class TestBodies:
  """Test chromosome count, gender and body shapes"""

  @pytest.fixture
  def parser(self):
    return KaryotypeParser()

  def test_normal_female(self, parser):
    result = parser.parse("46,XX")
    assert result.ok
    body = result.clones[0].body
    assert isinstance(body, KaryotypeBody)
    assert body.shape == "canonical"
    assert body.count.value.low == 46
    assert body.gender.sex.chromosomes() == ["X"]

  def test_constitutional_sex(self, parser):
    result = parser.parse("47,XXYc")
    assert result.ok
    assert result.clones[0].body.gender.sex.constitutional

  def test_alternative_sex(self, parser):
    sex = parser.parse("46,XXorXY").clones[0].body.gender.sex
    assert sex.runs == ("XX", "XY")
    assert sex.joiners == ("or",)

  def test_modal_number(self, parser):
    result = parser.parse("69<3n>,XXX,+8")
    assert result.ok
    assert result.clones[0].body.modal.content.text == "3n"

  def test_missing_gender_comma(self, parser):
    result = parser.parse("46XX")
    assert result.serialized_diagnostics() == ["2|Missing a comma before 'XX'"]
    assert result.diagnostics[0].offset == 2
    assert result.revised == "46,XX"

  def test_too_many_gender_commas(self, parser):
    result = parser.parse("46,,XX")
    assert [(d.offset, d.length) for d in result.diagnostics] == [(4, 2)]
    assert messages(result) == ["Too many commas before 'XX'"]

  def test_sex_chromosome_event_counts_as_gender(self, parser):
    result = parser.parse("47,+X")
    assert result.clones[0].body.shape == "missing_gender"
    assert result.ok

  def test_sex_chromosome_in_aberration_counts_as_gender(self, parser):
    assert parser.parse("46,t(X;1)(p11;q21)").ok

  def test_missing_gender(self, parser):
    result = parser.parse("47,+21")
    assert [(d.offset, d.length, d.message) for d in result.diagnostics] == [
      (0, 6, "Missing gender in clone #1")]

  def test_missing_count_and_gender(self, parser):
    result = parser.parse("+8")
    assert result.clones[0].body.shape == "missing_count_and_gender"
    assert messages(result) == ["Missing chromosome numbers and gender in clone #1"]

  def test_mosaic(self, parser):
    result = parser.parse("mos45,X[10]/46,XX[20]")
    assert result.ok
    assert result.clones[0].body.mosaic == "mos"
    assert [c.body.cell_count.cells for c in result.clones] == [10, 20]


class TestSexChromosomeScope:
  """Test that sex chromosomes are tracked per clone"""

  @pytest.fixture
  def parser(self):
    return KaryotypeParser()

  def test_gain_of_x_does_not_carry_to_next_clone(self, parser):
    result = parser.parse("47,+X[5]/47,+21[3]")
    assert [(d.offset, d.length, d.message) for d in result.diagnostics] == [
      (9, 9, "Missing gender in clone #2")]

  def test_each_clone_numbered(self, parser):
    result = parser.parse("47,+21[5]/47,+21[3]")
    assert messages(result) == ["Missing gender in clone #1", "Missing gender in clone #2"]


class TestSpecialMarkers:
  """Test idem, sl and sdl clones"""

  @pytest.fixture
  def parser(self):
    return KaryotypeParser()

  def test_idem(self, parser):
    result = parser.parse("46,XX,t(9;22)(q34;q11)[3]/47,idem,+8[5]")
    assert result.ok
    assert isinstance(result.row, RowTypeI)
    body = result.clones[1].body
    assert body.shape == "special"
    assert isinstance(body.special.marker, IdemEvent)

  def test_idem_without_count(self, parser):
    result = parser.parse("46,XX,t(9;22)(q34;q11)[3]/idem,+8[5]")
    assert [(d.offset, d.length, d.message) for d in result.diagnostics] == [
      (26, 10, "Missing chromosome numbers in clone #2")]

  def test_idem_missing_comma(self, parser):
    result = parser.parse("46,XX[3]/47idem,+8[2]")
    assert [(d.offset, d.length, d.message) for d in result.diagnostics] == [
      (11, 4, "Missing a comma before 'idem'")]

  def test_stemline_and_sidelines(self, parser):
    result = parser.parse("46,XX,t(9;22)(q34;q11)[3]/47,sl,+8[5]/48,sdl1,+10[2]")
    assert result.ok
    assert isinstance(result.row, RowTypeII)
    group = result.row.groups[0]
    assert len(group.sidelines) == 2
    assert isinstance(group.sidelines[0].body.special.marker, StemlineEvent)
    sideline = group.sidelines[1].body.special.marker
    assert isinstance(sideline, SidelineEvent)
    assert sideline.number == 1

  def test_second_stemline_group(self, parser):
    result = parser.parse("46,XX,t(9;22)(q34;q11)[3]/47,sl,+8[5]/47,XX,+21[4]/48,sl,+8[2]")
    assert result.ok
    assert len(result.row.groups) == 2
    assert [c.role for c in result.clones] == ["stemline", "sideline", "stemline", "sideline"]


class TestCloneSeparation:
  """Test the slant between clones"""

  @pytest.fixture
  def parser(self):
    return KaryotypeParser()

  def test_two_clones(self, parser):
    result = parser.parse("47,XX,+8[5]/46,XX[15]")
    assert result.ok
    assert [c.separation for c in result.clones] == ["none", "correct"]

  def test_too_many_slants(self, parser):
    result = parser.parse("46,XX//47,XY")
    assert [(d.offset, d.length, d.message) for d in result.diagnostics] == [
      (5, 7, "Too many slants '//' before clone #2")]
    assert result.revised == "46,XX/47,XY"

  def test_incorrect_separator(self, parser):
    result = parser.parse("46,XX;47,XY")
    assert result.clones[1].separation == "incorrect"
    assert messages(result) == ["Incorrect clone separation ';' before clone #2"]

  def test_comma_as_separator(self, parser):
    result = parser.parse("46,XX,47,XY")
    assert [(d.offset, d.length, d.message) for d in result.diagnostics] == [
      (5, 6, "Incorrect clone separation ',' before clone #2")]

  def test_missing_slant(self, parser):
    result = parser.parse("46,XX47,XY")
    assert [(d.offset, d.length, d.message) for d in result.diagnostics] == [
      (5, 5, "Missing a slant '/' before clone #2 '47,XY'")]
    assert result.revised == "46,XX/47,XY"

  def test_nonclonal_clone(self, parser):
    result = parser.parse("46,XX[20]/4n[3]")
    assert result.ok
    clone = result.clones[1]
    assert clone.role == "nonclonal"
    assert isinstance(clone.body, NonclonalBody)
    assert clone.body.ploidy.level == "4n"


class TestRows:
  """Test row level structure"""

  @pytest.fixture
  def parser(self):
    return KaryotypeParser()

  def test_terminated_row(self, parser):
    result = parser.parse("46,XX.")
    assert result.ok
    assert result.row.terminated

  def test_invalid_row(self, parser):
    result = parser.parse("hello")
    assert isinstance(result.row, InvalidRow)
    assert result.is_fatal
    assert result.serialized_diagnostics() == [
      "-1|This is an incorrect input for karyotype parsing."]
    assert result.revised is None
    assert result.clones == []

  def test_empty_input_is_fatal(self, parser):
    assert parser.parse("").is_fatal
