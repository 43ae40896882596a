"""
Diagnostic tests
Tests serialization, formatting, offset mapping and strict parsing
"""

import pytest
from parsing import KaryotypeParser
from error_handling import (
  Diagnostic, ParseContext, KaryotypeParseError, FATAL_MESSAGE,
  format_diagnostic, get_context_lines, format_report, serialize_diagnostic,
  relocate_diagnostic,
)
from utilities import normalize_karyotype, map_span, strip_quotes, truncate


class TestSerialization:
  """Test the length|message wire format"""

  def test_serialize(self):
    diag = Diagnostic(2, 2, "Missing a comma before 'XX'")
    assert serialize_diagnostic(diag) == "2|Missing a comma before 'XX'"
    assert str(diag) == diag.serialize()

  def test_fatal_serialization(self):
    assert serialize_diagnostic(Diagnostic(0, -1, FATAL_MESSAGE)) == (
      "-1|This is an incorrect input for karyotype parsing.")


class TestFormatting:
  """Test human readable diagnostic output"""

  def test_format_diagnostic(self):
    diag = Diagnostic(2, 2, "Missing a comma before 'XX'")
    assert format_diagnostic(diag, "46XX") == "XX: Missing a comma before 'XX'"

  def test_format_fatal_uses_full_input(self):
    diag = Diagnostic(0, -1, FATAL_MESSAGE)
    assert format_diagnostic(diag, "hello") == f"[Full input: hello]: {FATAL_MESSAGE}"

  def test_format_out_of_range_offset(self):
    diag = Diagnostic(10, 2, "Something")
    assert format_diagnostic(diag, "46XX").startswith("[Full input: 46XX]")

  def test_context_lines(self):
    diag = Diagnostic(2, 2, "Missing a comma before 'XX'")
    assert get_context_lines("46XX", diag) == "  46XX\n    ^~"

  def test_report_numbers_issues(self):
    text = "46XX,,+8"
    diagnostics = [Diagnostic(2, 2, "first"), Diagnostic(6, 2, "second")]
    report = format_report(text, diagnostics, context=False)
    assert report.splitlines() == ["  1. XX: first", "  2. +8: second"]

  def test_truncate(self):
    assert truncate("abc", 2) == "ab..."
    assert truncate("abc") == "abc"


class TestParseContext:
  """Test per-clone diagnostic state"""

  def test_sex_chromosomes_uppercased(self):
    context = ParseContext()
    context.note_chromosome("x")
    context.note_chromosome("21")
    assert context.sex_chromosomes == {"X"}

  def test_exit_clone_resets_sex(self):
    context = ParseContext()
    context.enter_clone()
    context.note_chromosome("Y")
    context.exit_clone()
    context.enter_clone()
    assert context.clone_index == 2
    assert context.sex_chromosomes == set()


class TestOffsets:
  """Test mapping between source text and normalized text"""

  def test_normalize_removes_whitespace(self):
    assert normalize_karyotype("46, XX") == ("46,XX", [0, 1, 2, 4, 5, 6])

  def test_normalize_strips_quotes(self):
    text, offsets = normalize_karyotype('"46,XX"')
    assert text == "46,XX"
    assert offsets[0] == 1

  def test_strip_quotes_needs_matching_pair(self):
    assert strip_quotes("'46,XX\"") == ("'46,XX\"", 0)

  def test_map_span(self):
    assert map_span([0, 1, 2, 4, 5, 6], 3, 2) == (4, 2)

  def test_map_span_keeps_negative_length(self):
    assert map_span([0, 1, 2], 0, -1) == (0, -1)

  def test_relocate(self):
    _, offsets = normalize_karyotype("46 XX")
    diag = relocate_diagnostic(Diagnostic(2, 2, "Missing a comma before 'XX'"), offsets)
    assert (diag.offset, diag.length) == (3, 2)


class TestParserDiagnostics:
  """Test diagnostics as reported by the parser"""

  @pytest.fixture
  def parser(self):
    return KaryotypeParser()

  def test_offsets_point_into_source(self, parser):
    result = parser.parse("46 XX")
    assert result.text == "46XX"
    assert [(d.offset, d.length) for d in result.diagnostics] == [(3, 2)]

  def test_quoted_input(self, parser):
    result = parser.parse('"46,XX"')
    assert result.ok
    assert result.text == "46,XX"

  def test_diagnostics_in_rule_order(self, parser):
    result = parser.parse("46XX,,+8")
    assert result.serialized_diagnostics() == [
      "2|Missing a comma before 'XX'",
      "2|Too many commas before '+8'",
    ]
    assert [d.offset for d in result.diagnostics] == [2, 6]

  def test_strict_parse_raises(self, parser):
    with pytest.raises(KaryotypeParseError) as excinfo:
      parser.parse_strict("46XX")
    error = excinfo.value
    assert error.text == "46XX"
    assert len(error.diagnostics) == 1
    assert "Missing a comma before 'XX'" in str(error)

  def test_strict_parse_accepts_valid(self, parser):
    assert parser.parse_strict("46,XY").ok

  def test_missing_file(self, parser, tmp_path):
    with pytest.raises(KaryotypeParseError):
      parser.parse_file(str(tmp_path / "missing.txt"))
