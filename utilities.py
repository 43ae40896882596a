"""
Utilities module for the karyotype parser
Contains input normalization and offset bookkeeping helpers
"""

from typing import List, Tuple
from pathlib import Path


QUOTE_CHARS = ('"', "'")


# ==================== INPUT NORMALIZATION ====================

def strip_quotes(text: str) -> Tuple[str, int]:
  """
  Remove one pair of matching surrounding quotes

  Args:
    text: Raw karyotype text, possibly exported with quotes

  Returns:
    (unquoted text, number of characters removed from the front)

  Examples:
    strip_quotes('"46,XX"') -> ('46,XX', 1)
    strip_quotes('46,XX') -> ('46,XX', 0)
  """
  stripped = text.strip()
  lead = len(text) - len(text.lstrip())
  if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in QUOTE_CHARS:
    return stripped[1:-1], lead + 1
  return text, 0


def normalize_karyotype(source: str) -> Tuple[str, List[int]]:
  """
  Remove quotes and all whitespace, keeping a map back to the source

  Args:
    source: Karyotype as written by the caller

  Returns:
    (normalized text, offsets) where offsets[i] is the source index of
    normalized character i; offsets has one extra entry for end of input

  Examples:
    normalize_karyotype("46, XX") -> ("46,XX", [0, 1, 2, 4, 5, 6])
  """
  body, shift = strip_quotes(source)
  chars = []
  offsets = []
  for index, char in enumerate(body):
    if char.isspace():
      continue
    chars.append(char)
    offsets.append(index + shift)
  offsets.append(offsets[-1] + 1 if offsets else shift)
  return "".join(chars), offsets


def map_span(offsets: List[int], offset: int, length: int) -> Tuple[int, int]:
  """
  Translate an (offset, length) pair from normalized text to source text

  Negative lengths mark whole-input diagnostics and are kept as they are.

  Examples:
    map_span([0, 1, 2, 4, 5, 6], 3, 2) -> (4, 2)
  """
  if length < 0 or not offsets:
    return offset, length
  offset = max(0, min(offset, len(offsets) - 1))
  start = offsets[offset]
  if length == 0:
    return start, 0
  last = min(offset + length - 1, len(offsets) - 2)
  if last < offset:
    return start, 0
  return start, offsets[last] + 1 - start


# ==================== TEXT HELPERS ====================

def truncate(text: str, limit: int = 100) -> str:
  """
  Shorten long text for display

  Examples:
    truncate("abc", 2) -> "ab..."
  """
  if len(text) > limit:
    return text[:limit] + "..."
  return text


def tail(text: str, limit: int = 100) -> str:
  """Keep the last `limit` characters of text"""
  return text[-limit:] if len(text) > limit else text


def read_karyotype_lines(filepath: str) -> List[Tuple[int, str]]:
  """
  Read one karyotype per line from a text file

  Blank lines and lines starting with '#' are skipped.

  Returns:
    List of (line number, karyotype) pairs, line numbers 1-based
  """
  entries = []
  content = Path(filepath).read_text(encoding='utf-8')
  for line_num, line in enumerate(content.splitlines(), 1):
    stripped = line.strip()
    if not stripped or stripped.startswith('#'):
      continue
    entries.append((line_num, stripped))
  return entries
