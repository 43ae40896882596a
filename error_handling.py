"""
Diagnostics for the karyotype parser
Pure functional style - no classes except for data and compatibility
"""

from typing import Callable, Dict, List, Optional, Sequence, Set
from dataclasses import dataclass, field

from syntax_tree import (
    Node, SourceSpan, Chromosome, Bracketed, ElementRun, CellCount, Gender,
    SpecialMarker, RegularEvent, GainLossChromosome, BasicAberrationError,
    DerivativeAberrationError, KaryotypeBody, Clone, InvalidRow,
)
from utilities import map_span, truncate, tail


FATAL_MESSAGE = "This is an incorrect input for karyotype parsing."


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class Diagnostic:
    """Non-fatal parse issue anchored to a character range"""
    offset: int
    length: int
    message: str

    def serialize(self) -> str:
        return serialize_diagnostic(self)

    def __str__(self) -> str:
        return self.serialize()


@dataclass
class ParseContext:
    """Mutable state of one diagnostic pass: clone ordinal and sex chromosomes"""
    clone_index: int = 0
    sex_chromosomes: Set[str] = field(default_factory=set)

    def enter_clone(self) -> None:
        self.clone_index += 1

    def exit_clone(self) -> None:
        self.sex_chromosomes = set()

    def note_chromosome(self, name: str) -> None:
        if name.upper() in ("X", "Y"):
            self.sex_chromosomes.add(name.upper())


def make_diagnostic(offset: int, length: int, message: str) -> Diagnostic:
    return Diagnostic(offset, length, message)


def span_diagnostic(span: SourceSpan, message: str) -> Diagnostic:
    return Diagnostic(span.start, span.length, message)


def serialize_diagnostic(diag: Diagnostic) -> str:
    """Serialize as '<length>|<message>'"""
    return f"{diag.length}|{diag.message}"


def relocate_diagnostic(diag: Diagnostic, offsets: List[int]) -> Diagnostic:
    """Move a diagnostic from normalized text coordinates to source coordinates"""
    offset, length = map_span(offsets, diag.offset, diag.length)
    return Diagnostic(offset, length, diag.message)


# ============================================================================
# FORMATTING
# ============================================================================

def format_diagnostic(diag: Diagnostic, text: str) -> str:
    """Format as '<offending text>: <message>'"""
    if diag.length < 0:
        return f"[Full input: {tail(text)}]: {diag.message}"
    start = max(0, diag.offset)
    if start >= len(text):
        return f"[Full input: {tail(text)}]: {diag.message}"
    error_part = text[start:min(len(text), start + diag.length)]
    return f"{truncate(error_part)}: {diag.message}"


def get_context_lines(text: str, diag: Diagnostic) -> str:
    """Show the karyotype with the diagnostic range underlined"""
    if diag.length < 0:
        return f"  {text}\n  {'^' * max(1, len(text))}"
    width = max(1, diag.length)
    return f"  {text}\n  {' ' * diag.offset}^{'~' * (width - 1)}"


def format_report(text: str, diagnostics: Sequence[Diagnostic], context: bool = True) -> str:
    """Format every diagnostic for a karyotype, one block per issue"""
    parts = []
    for number, diag in enumerate(diagnostics, 1):
        parts.append(f"  {number}. {format_diagnostic(diag, text)}")
        if context:
            parts.append(get_context_lines(text, diag))
    return '\n'.join(parts)


# ============================================================================
# CHECKS (one per node type, run after the node's children)
# ============================================================================

def check_bracketed(node: Bracketed, context: ParseContext) -> List[Diagnostic]:
    label = node.LABEL
    content = node.content.span.text
    expected = node.OPEN + node.CLOSE
    diagnostics = []
    if isinstance(node.content, ElementRun) and not node.content.correct:
        diagnostics.append(span_diagnostic(
            node.content.span,
            f"Incorrect use of separators for {label} '{content}', expecting ';'"))
    if node.shape == "missing_open":
        diagnostics.append(span_diagnostic(node.span, f"Missing '{node.OPEN}' for {label} '{content}'"))
    elif node.shape == "missing_close":
        diagnostics.append(span_diagnostic(node.span, f"Missing '{node.CLOSE}' for {label} '{content}'"))
    elif node.shape == "missing_both":
        diagnostics.append(span_diagnostic(node.span, f"Missing '{expected}' for {label} '{content}'"))
    elif node.shape == "wrong_bracket":
        diagnostics.append(span_diagnostic(
            node.span, f"Wrong bracket format for {label} '{content}', expecting '{expected}'"))
    return diagnostics


def check_cell_count(node: CellCount, context: ParseContext) -> List[Diagnostic]:
    diagnostics = []
    content = node.content
    if content.shape == "cp_suffix":
        diagnostics.append(span_diagnostic(
            content.span, f"Incorrect expression of composite karyotype (cp) in '{content.span.text}'"))
    elif content.shape == "cell_word":
        diagnostics.append(span_diagnostic(
            content.span, f"Incorrect addition of the word 'cell(s)' in '{content.span.text}'"))
    return diagnostics + check_bracketed(node, context)


def _check_comma(span: SourceSpan, shape: str, what: str) -> List[Diagnostic]:
    if shape == "missing":
        return [span_diagnostic(span, f"Missing a comma before '{what}'")]
    if shape == "too_many":
        return [span_diagnostic(span, f"Too many commas before '{what}'")]
    return []


def check_gender(node: Gender, context: ParseContext) -> List[Diagnostic]:
    return _check_comma(node.sex.span, node.shape, node.sex.span.text)


def check_special_marker(node: SpecialMarker, context: ParseContext) -> List[Diagnostic]:
    return _check_comma(node.marker.span, node.shape, node.marker.span.text)


def check_regular_event(node: RegularEvent, context: ParseContext) -> List[Diagnostic]:
    return _check_comma(node.event.span, node.shape, node.event.span.text)


def check_gain_loss(node: GainLossChromosome, context: ParseContext) -> List[Diagnostic]:
    if node.shape != "undetermined":
        return []
    return [span_diagnostic(
        node.span,
        f"Undetermined prefix '{node.sign}' for '{node.span.text}': cannot use both '-' and '+'")]


def check_stray_commas(node, context: ParseContext) -> List[Diagnostic]:
    return [make_diagnostic(comma.span.start, 1, f"Incorrect comma before '{comma.following}'")
            for comma in node.stray_commas]


def check_body(node: KaryotypeBody, context: ParseContext) -> List[Diagnostic]:
    clone = context.clone_index
    if node.shape == "missing_gender" and not context.sex_chromosomes:
        return [span_diagnostic(node.span, f"Missing gender in clone #{clone}")]
    if node.shape == "missing_count_and_gender":
        return [span_diagnostic(node.span, f"Missing chromosome numbers and gender in clone #{clone}")]
    if node.shape == "special_missing_count":
        return [span_diagnostic(node.span, f"Missing chromosome numbers in clone #{clone}")]
    return []


def check_clone(node: Clone, context: ParseContext) -> List[Diagnostic]:
    clone = context.clone_index
    if node.separation == "missing":
        return [span_diagnostic(
            node.body.span, f"Missing a slant '/' before clone #{clone} '{node.body.span.text}'")]
    if node.separation == "too_many":
        return [span_diagnostic(node.span, f"Too many slants '{node.separator}' before clone #{clone}")]
    if node.separation == "incorrect":
        return [span_diagnostic(node.span, f"Incorrect clone separation '{node.separator}' before clone #{clone}")]
    return []


def check_invalid_row(node: InvalidRow, context: ParseContext) -> List[Diagnostic]:
    return [make_diagnostic(0, -1, FATAL_MESSAGE)]


CHECKS: Dict[type, Callable[[Node, ParseContext], List[Diagnostic]]] = {
    CellCount: check_cell_count,
    Bracketed: check_bracketed,
    Gender: check_gender,
    SpecialMarker: check_special_marker,
    RegularEvent: check_regular_event,
    GainLossChromosome: check_gain_loss,
    BasicAberrationError: check_stray_commas,
    DerivativeAberrationError: check_stray_commas,
    KaryotypeBody: check_body,
    Clone: check_clone,
    InvalidRow: check_invalid_row,
}


def find_check(node: Node) -> Optional[Callable[[Node, ParseContext], List[Diagnostic]]]:
    """Most specific check registered for the node's class"""
    for cls in type(node).__mro__:
        if cls in CHECKS:
            return CHECKS[cls]
    return None


def visit_node(node: Node, context: ParseContext, diagnostics: List[Diagnostic]) -> None:
    """Post-order walk; clone entry and exit update the context"""
    if isinstance(node, Clone):
        context.enter_clone()
    for child in node.iter_children():
        visit_node(child, context, diagnostics)
    if isinstance(node, Chromosome):
        context.note_chromosome(node.name)
    check = find_check(node)
    if check is not None:
        diagnostics.extend(check(node, context))
    if isinstance(node, Clone):
        context.exit_clone()


def collect_diagnostics(row: Node) -> List[Diagnostic]:
    """Collect every diagnostic of a parsed row, in source order of rules"""
    diagnostics: List[Diagnostic] = []
    visit_node(row, ParseContext(), diagnostics)
    return diagnostics


# ============================================================================
# COMPATIBILITY CLASSES
# ============================================================================

class KaryotypeParseError(Exception):
    """Raised by strict parsing and by input that cannot be read"""
    def __init__(self, message: str, text: str = "", diagnostics: Optional[Sequence[Diagnostic]] = None):
        self.message = message
        self.text = text
        self.diagnostics = list(diagnostics or [])
        super().__init__(message)

    def __str__(self) -> str:
        if not self.diagnostics:
            return self.message
        return f"{self.message}\n{format_report(self.text, self.diagnostics)}"
