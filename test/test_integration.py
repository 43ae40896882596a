"""
Integration tests for the karyotype parser
End-to-end parsing, canonical rendering and the command line interface
"""

import json
import pytest
from parsing import (
  KaryotypeParser, create_debug_parser, parse_karyotype, pretty_print_tree,
  tree_to_dict,
)
from main import main


VALID_KARYOTYPES = [
  "46,XX",
  "46,XY,t(9;22)(q34;q11.2)",
  "47,XX,+21",
  "45,X,-X",
  "46,XX,t(2;5;7)",
  "46,XY,del(5)(q13q33)",
  "46,XY,del(5q13q33)",
  "mos45,X[10]/46,XX[20]",
  "69<3n>,XXX,+8",
  "46,XX[cp20]",
  "46,XX,der(13)(13pter->13q10::15q10->15qter)",
  "46,XX,der(22)t(9;22)(q34;q11)",
  "46,XX,t(9;22)(q34;q11)[3]/47,sl,+8[5]/48,sdl1,+10[2]",
  "46,XX,t(9;22)(q34;q11)[3]/47,idem,+8[5]",
  "46,XX[20]/4n[3]",
  "46,XX.",
]


class TestEndToEnd:
  """Test complete karyotypes through the public parser"""

  @pytest.fixture
  def parser(self):
    return KaryotypeParser()

  @pytest.mark.parametrize("karyotype", VALID_KARYOTYPES)
  def test_valid_karyotype_has_no_diagnostics(self, parser, karyotype):
    result = parser.parse(karyotype)
    assert result.ok, result.serialized_diagnostics()
    assert result.revised is None

  @pytest.mark.parametrize("karyotype", VALID_KARYOTYPES)
  def test_canonical_rendering_is_identity(self, parser, karyotype):
    result = parser.parse(karyotype)
    assert result.row.to_iscn() == karyotype
    assert parser.parse(result.row.to_iscn()).row == result.row

  def test_revised_karyotype_parses_cleanly(self, parser):
    result = parser.parse("46XX,t9;22)(q34,q11)//47,XX,+8[5]")
    assert not result.ok
    assert result.revised == "46,XX,t(9;22)(q34;q11)/47,XX,+8[5]"
    assert parser.parse(result.revised).ok

  def test_parse_is_repeatable(self, shared_parser):
    first = shared_parser.parse("46XX")
    second = shared_parser.parse("46XX")
    assert first == second

  def test_module_level_parse(self):
    assert parse_karyotype("46,XY").ok

  def test_debug_parser_prints(self, capsys):
    create_debug_parser().parse("46,XX")
    output = capsys.readouterr().out
    assert "[parser] normalized input: '46,XX'" in output
    assert "[grammar]" in output

  def test_tree_helpers(self, parser):
    result = parser.parse("46,XX,+8")
    printed = pretty_print_tree(result.row)
    assert printed.startswith("RowTypeI '46,XX,+8'")
    assert "GainLossChromosome '+8'" in printed

    data = tree_to_dict(result.row)
    assert data["type"] == "RowTypeI"
    assert data["clones"][0]["body"]["count"]["value"]["low"] == 46
    json.dumps(data)


class TestFileParsing:
  """Test parsing karyotype files"""

  @pytest.fixture
  def karyotype_file(self, tmp_path):
    path = tmp_path / "karyotypes.txt"
    path.write_text("# sample cases\n46,XX\n\n46XX\n  47,XY,+21  \n", encoding="utf-8")
    return path

  def test_parse_file(self, karyotype_file):
    entries = KaryotypeParser().parse_file(str(karyotype_file))
    assert [line for line, _ in entries] == [2, 4, 5]
    assert [result.ok for _, result in entries] == [True, False, True]


class TestCommandLine:
  """Test the iscn-parse entry point"""

  def test_no_arguments_prints_help(self, capsys):
    assert main([]) == 0
    assert "usage" in capsys.readouterr().out.lower()

  def test_valid_karyotype(self, capsys):
    assert main(["46,XY"]) == 0
    assert "[OK]" in capsys.readouterr().out

  def test_issue_report(self, capsys):
    assert main(["46XX"]) == 0
    output = capsys.readouterr().out
    assert "2|Missing a comma before 'XX'" in output
    assert "Maybe you mean: 46,XX" in output

  def test_strict_exit_status(self, capsys):
    assert main(["--strict", "46,XX"]) == 0
    assert main(["--strict", "46,XX", "46XX"]) == 1

  def test_json_output(self, capsys):
    assert main(["--json", "46XX"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data[0]["valid"] is False
    assert data[0]["diagnostics"][0]["serialized"] == "2|Missing a comma before 'XX'"
    assert data[0]["revised"] == "46,XX"

  def test_json_with_tree(self, capsys):
    main(["--json", "--tree", "46,XX"])
    data = json.loads(capsys.readouterr().out)
    assert data[0]["tree"]["type"] == "RowTypeI"

  def test_tokens(self, capsys):
    main(["--tokens", "46,XX"])
    assert "DIGITS(46) COMMA(,) LETTERS(XX)" in capsys.readouterr().out

  def test_file_option(self, tmp_path, capsys):
    path = tmp_path / "input.txt"
    path.write_text("46,XX\n47,XY,+21\n", encoding="utf-8")
    assert main(["--file", str(path)]) == 0
    output = capsys.readouterr().out
    assert "1: 46,XX" in output
    assert "2: 47,XY,+21" in output

  def test_missing_file(self, tmp_path, capsys):
    assert main(["--file", str(tmp_path / "nope.txt")]) == 1
    assert "does not exist" in capsys.readouterr().out
