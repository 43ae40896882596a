"""
ISCN Karyotype Parser - Main Entry Point
Parses karyotype strings and reports structure, diagnostics and revisions
"""

import sys
import json
import argparse
from pathlib import Path
from typing import List, Optional

from parsing import (
  create_parser, create_debug_parser, ParseResult, KaryotypeParser,
  KaryotypeTokenizerError, pretty_print_tree, tree_to_dict,
)
from error_handling import KaryotypeParseError, format_diagnostic, get_context_lines


VERSION = "iscn-karyotype-parser v0.3.0"


def create_arg_parser() -> argparse.ArgumentParser:
  """Create command line argument parser"""
  parser = argparse.ArgumentParser(
      description='ISCN karyotype parser - error-tolerant parsing with diagnostics',
      formatter_class=argparse.RawDescriptionHelpFormatter,
      epilog="""
Examples:
  %(prog)s "46,XY,t(9;22)(q34;q11.2)"     # Parse one karyotype
  %(prog)s "46XX" "47,XX,+21"              # Parse several karyotypes
  %(prog)s --file karyotypes.txt          # Parse one karyotype per line
  %(prog)s --tree "46,XX,del(5)(q13q33)"  # Show the syntax tree
  %(prog)s --json "46,XX"                 # Machine-readable output
  %(prog)s --strict "46XX"                # Exit with status 1 on any issue
        """
  )

  parser.add_argument(
      'karyotypes',
      nargs='*',
      help='Karyotype strings to parse'
  )

  parser.add_argument(
      '-f', '--file',
      help='Text file with one karyotype per line (# starts a comment)'
  )

  parser.add_argument(
      '--tree',
      action='store_true',
      help='Show the syntax tree for each karyotype'
  )

  parser.add_argument(
      '--tokens',
      action='store_true',
      help='Show the token stream for each karyotype (for debugging)'
  )

  parser.add_argument(
      '--json',
      action='store_true',
      help='Print results as JSON'
  )

  parser.add_argument(
      '--strict',
      action='store_true',
      help='Exit with status 1 when any karyotype has diagnostics'
  )

  parser.add_argument(
      '--debug',
      action='store_true',
      help='Enable debug output'
  )

  parser.add_argument(
      '--version',
      action='version',
      version=VERSION
  )

  return parser


def result_to_dict(result: ParseResult, include_tree: bool = False) -> dict:
  """Convert a parse result to a JSON-ready dictionary"""
  data = {
    'input': result.source,
    'normalized': result.text,
    'valid': result.ok,
    'row_type': result.row.type_name,
    'diagnostics': [
      {'offset': d.offset, 'length': d.length, 'message': d.message, 'serialized': d.serialize()}
      for d in result.diagnostics
    ],
    'revised': result.revised,
  }
  if include_tree:
    data['tree'] = tree_to_dict(result.row)
  return data


def print_result(result: ParseResult, show_tree: bool = False, label: Optional[str] = None) -> None:
  """Print one parse result in human-readable form"""
  header = f"{label}: " if label else ""
  status = "OK" if result.ok else f"{len(result.diagnostics)} issue(s)"
  print(f"{header}{result.source}  [{status}]")

  for diag in result.diagnostics:
    print(f"  {diag.serialize()}")
    print(f"    {format_diagnostic(diag, result.source)}")
    if diag.length >= 0:
      print("\n".join(f"  {line}" for line in get_context_lines(result.source, diag).split("\n")))

  if result.revised:
    print(f"  Maybe you mean: {result.revised}")

  if show_tree:
    print(pretty_print_tree(result.row, 1))


def show_tokens(parser: KaryotypeParser, text: str) -> None:
  """Print the token stream of a karyotype"""
  try:
    tokens = parser.tokenize(text)
  except KaryotypeTokenizerError as e:
    print(f"Tokenizer error: {e}")
    return
  print(" ".join(str(token) for token in tokens))


def load_file(parser: KaryotypeParser, path: str) -> List[ParseResult]:
  """Parse every karyotype in a file"""
  try:
    return [result for _, result in parser.parse_file(path)]
  except PermissionError:
    print(f"Error: Permission denied reading '{path}'")
    print(f"  Hint: Make sure you have read permissions for this file")
    sys.exit(1)
  except KaryotypeParseError as e:
    print(f"Error: {e}")
    print(f"  Hint: Check the file path and make sure it is a UTF-8 text file")
    sys.exit(1)


def main(argv: Optional[List[str]] = None) -> int:
  """Main entry point"""
  arg_parser = create_arg_parser()
  args = arg_parser.parse_args(argv)

  if not args.karyotypes and not args.file:
    arg_parser.print_help()
    return 0

  parser = create_debug_parser() if args.debug else create_parser()

  if args.file and not Path(args.file).exists():
    print(f"Error: File '{args.file}' does not exist")
    return 1

  results = [parser.parse(text) for text in args.karyotypes]
  if args.file:
    results.extend(load_file(parser, args.file))

  if args.json:
    print(json.dumps([result_to_dict(r, args.tree) for r in results], indent=2, ensure_ascii=False))
  else:
    for number, result in enumerate(results, 1):
      if args.tokens:
        show_tokens(parser, result.source)
      print_result(result, args.tree, str(number) if len(results) > 1 else None)

  if args.strict and any(not r.ok for r in results):
    return 1
  return 0


if __name__ == "__main__":
  sys.exit(main())
