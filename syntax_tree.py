"""
Karyotype syntax tree
Immutable node types produced by the karyotype grammar, with source spans
and canonical ISCN rendering
"""

from typing import ClassVar, Iterator, List, Optional, Tuple
from dataclasses import dataclass, fields


@dataclass(frozen=True)
class SourceSpan:
    """Half-open character range [start, end) in the normalized karyotype text"""
    start: int
    end: int
    text: str = ""

    @property
    def length(self) -> int:
        return self.end - self.start

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class Node:
    """Base class of every syntax tree node"""
    span: SourceSpan

    @property
    def type_name(self) -> str:
        return type(self).__name__

    @property
    def text(self) -> str:
        return self.span.text

    def iter_children(self) -> Iterator['Node']:
        """Yield direct child nodes in field order"""
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Node):
                yield value
            elif isinstance(value, tuple):
                for item in value:
                    if isinstance(item, Node):
                        yield item

    def walk(self) -> Iterator['Node']:
        """Pre-order traversal of this node and all descendants"""
        yield self
        for child in self.iter_children():
            yield from child.walk()

    def to_iscn(self) -> str:
        """Render canonical ISCN for this node.

        Leaves render their source text; nodes that can carry a recoverable
        error override this to render the corrected form.
        """
        return self.span.text

    def __str__(self) -> str:
        return f"{self.type_name}({self.span.text!r})"


def _join(items: Tuple[Node, ...], joiners: Tuple[str, ...]) -> str:
    parts = [items[0].to_iscn()]
    for joiner, item in zip(joiners, items[1:]):
        parts.append(joiner + item.to_iscn())
    return "".join(parts)


# ============================================================================
# PRIMITIVES
# ============================================================================

@dataclass(frozen=True)
class NumRange(Node):
    """Numeric range: exact 'N', ranged 'N~M' / 'N-M', or open-ended '~N' / '-N'"""
    low: Optional[int] = None
    high: Optional[int] = None
    operator: Optional[str] = None

    @property
    def is_exact(self) -> bool:
        return self.operator is None


@dataclass(frozen=True)
class ChromosomeCount(Node):
    """Modal chromosome count, possibly uncertain ('?46') or unknown ('?')"""
    value: Optional[NumRange] = None
    uncertain: bool = False


@dataclass(frozen=True)
class Chromosome(Node):
    name: str = ""
    uncertain: bool = False

    @property
    def is_sex_chromosome(self) -> bool:
        return self.name.upper() in ("X", "Y")


@dataclass(frozen=True)
class Breakpoint(Node):
    """Arm/band/subband location such as 'q11.2', 'pter', 'cen' or '?'"""
    arm: str = "?"
    band: Optional[str] = None
    subband: Optional[str] = None
    uncertain: bool = False


@dataclass(frozen=True)
class Fragment(Node):
    """Opaque bracket content (modal number, uncertain chromosome)"""
    pass


@dataclass(frozen=True)
class Multiplication(Node):
    factor: int = 1


@dataclass(frozen=True)
class Ploidy(Node):
    level: str = ""


# ============================================================================
# LISTS AND BRACKETS
# ============================================================================

@dataclass(frozen=True)
class ChromosomeElement(Node):
    """One list element; several alternatives when joined by 'or' / '::'"""
    alternatives: Tuple[Chromosome, ...] = ()
    joiners: Tuple[str, ...] = ()

    @property
    def is_ambiguous(self) -> bool:
        return len(self.alternatives) > 1

    def to_iscn(self) -> str:
        return _join(self.alternatives, self.joiners)


@dataclass(frozen=True)
class BreakpointRun(Node):
    """Consecutive breakpoints belonging to one chromosome, e.g. 'q13q33'"""
    breakpoints: Tuple[Breakpoint, ...] = ()

    def to_iscn(self) -> str:
        return "".join(bp.to_iscn() for bp in self.breakpoints)


@dataclass(frozen=True)
class BreakpointGroup(Node):
    alternatives: Tuple[BreakpointRun, ...] = ()
    joiners: Tuple[str, ...] = ()

    @property
    def is_ambiguous(self) -> bool:
        return len(self.alternatives) > 1

    def to_iscn(self) -> str:
        return _join(self.alternatives, self.joiners)


@dataclass(frozen=True)
class DetailedElement(Node):
    """Chromosome with its breakpoints folded in, as in 'del(5q13q33)'"""
    chromosome: Optional[Chromosome] = None
    breakpoints: Tuple[Breakpoint, ...] = ()

    def to_iscn(self) -> str:
        return self.chromosome.to_iscn() + "".join(bp.to_iscn() for bp in self.breakpoints)


@dataclass(frozen=True)
class ElementRun(Node):
    """Separated list elements; correct when every separator is ';'"""
    elements: Tuple[Node, ...] = ()
    correct: bool = True

    def to_iscn(self) -> str:
        return ";".join(element.to_iscn() for element in self.elements)


BRACKET_SHAPES = ("correct", "missing_open", "missing_close", "missing_both", "wrong_bracket")


@dataclass(frozen=True)
class Bracketed(Node):
    """A bracketed construct and the way its brackets were actually written"""
    OPEN: ClassVar[str] = "("
    CLOSE: ClassVar[str] = ")"
    LABEL: ClassVar[str] = "list"

    content: Optional[Node] = None
    shape: str = "correct"

    @property
    def elements(self) -> Tuple[Node, ...]:
        if isinstance(self.content, ElementRun):
            return self.content.elements
        return (self.content,)

    def to_iscn(self) -> str:
        return self.OPEN + self.content.to_iscn() + self.CLOSE


@dataclass(frozen=True)
class ChromosomeList(Bracketed):
    LABEL: ClassVar[str] = "chromosome list"

    def chromosomes(self) -> List[str]:
        return [alt.to_iscn() for element in self.elements for alt in element.alternatives]


@dataclass(frozen=True)
class BreakpointsList(Bracketed):
    LABEL: ClassVar[str] = "breakpoints list"

    def breakpoints(self) -> List[str]:
        return [bp.to_iscn()
                for group in self.elements
                for run in group.alternatives
                for bp in run.breakpoints]


@dataclass(frozen=True)
class DetailedBreakpointsList(Bracketed):
    LABEL: ClassVar[str] = "detailed breakpoints list"


@dataclass(frozen=True)
class DerivativeChromosomeList(ChromosomeList):
    LABEL: ClassVar[str] = "derivative chromosome list"


@dataclass(frozen=True)
class DerivativeBreakpointsList(BreakpointsList):
    LABEL: ClassVar[str] = "derivative breakpoints list"


@dataclass(frozen=True)
class UncertainChromosome(Bracketed):
    LABEL: ClassVar[str] = "uncertain chromosome"


@dataclass(frozen=True)
class ModalNumber(Bracketed):
    OPEN: ClassVar[str] = "<"
    CLOSE: ClassVar[str] = ">"
    LABEL: ClassVar[str] = "modal number"


@dataclass(frozen=True)
class CellNumContent(Node):
    """Cell count text; shape is 'correct', 'cp_suffix' or 'cell_word'"""
    cells: int = 0
    composite: bool = False
    shape: str = "correct"

    def to_iscn(self) -> str:
        return ("cp" if self.composite else "") + str(self.cells)


@dataclass(frozen=True)
class CellCount(Bracketed):
    OPEN: ClassVar[str] = "["
    CLOSE: ClassVar[str] = "]"
    LABEL: ClassVar[str] = "cell number"

    @property
    def cells(self) -> int:
        return self.content.cells

    @property
    def composite(self) -> bool:
        return self.content.composite


# ============================================================================
# DETAILED FORMULAS
# ============================================================================

@dataclass(frozen=True)
class DetailedBreakpoint(Node):
    chromosome: Optional[Chromosome] = None
    breakpoint: Optional[Breakpoint] = None

    def to_iscn(self) -> str:
        return self.chromosome.to_iscn() + self.breakpoint.to_iscn()


@dataclass(frozen=True)
class DetailedSegment(Node):
    """'13pter->13q10', a single point, or an 'hsr' insert"""
    start: Optional[DetailedBreakpoint] = None
    end: Optional[DetailedBreakpoint] = None
    hsr: bool = False

    def to_iscn(self) -> str:
        if self.hsr:
            return "hsr"
        if self.end is None:
            return self.start.to_iscn()
        return f"{self.start.to_iscn()}->{self.end.to_iscn()}"


@dataclass(frozen=True)
class DetailedFormula(Node):
    """Detailed derivative description, ring form when wrapped in '::'"""
    segments: Tuple[DetailedSegment, ...] = ()
    ring_open: bool = False
    ring_close: bool = False

    @property
    def is_ring(self) -> bool:
        return self.ring_open and self.ring_close

    def to_iscn(self) -> str:
        body = "::".join(segment.to_iscn() for segment in self.segments)
        return ("(" + ("::" if self.ring_open else "") + body +
                ("::" if self.ring_close else "") + ")")


# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True)
class StrayComma(Node):
    """Comma written where none is allowed, and the list text it precedes"""
    following: str = ""


@dataclass(frozen=True)
class GainLossChromosome(Node):
    """Whole-chromosome gain ('+21') or loss ('-7'); 'undetermined' for '+-'"""
    sign: str = "+"
    chromosome: Optional[Chromosome] = None
    suffix: Optional[str] = None
    shape: str = "gain"


@dataclass(frozen=True)
class BasicAberration(Node):
    aberration_id: str = ""
    chromosomes: Optional[Bracketed] = None
    breakpoints: Optional[Bracketed] = None
    prefix: Optional[str] = None
    mosaic: Optional[str] = None
    suffix: Optional[str] = None

    def segments(self) -> List[Tuple[str, Tuple[str, ...]]]:
        """(chromosome, breakpoints) pairs, independent of notation"""
        if isinstance(self.chromosomes, DetailedBreakpointsList):
            return [(element.chromosome.to_iscn(),
                     tuple(bp.to_iscn() for bp in element.breakpoints))
                    for element in self.chromosomes.elements]
        chromosomes = self.chromosomes.chromosomes() if isinstance(self.chromosomes, ChromosomeList) else []
        groups = list(self.breakpoints.elements) if self.breakpoints is not None else []
        pairs = []
        for index, chromosome in enumerate(chromosomes):
            if index < len(groups):
                run = groups[index].alternatives[0]
                pairs.append((chromosome, tuple(bp.to_iscn() for bp in run.breakpoints)))
            else:
                pairs.append((chromosome, ()))
        return pairs

    def to_iscn(self) -> str:
        parts = [self.prefix or "", self.mosaic or "", self.aberration_id,
                 self.chromosomes.to_iscn()]
        if self.breakpoints is not None:
            parts.append(self.breakpoints.to_iscn())
        parts.append(self.suffix or "")
        return "".join(parts)


@dataclass(frozen=True)
class BasicAberrationError(BasicAberration):
    stray_commas: Tuple[StrayComma, ...] = ()


@dataclass(frozen=True)
class RearrangementElement(Node):
    """Rearrangement inside a derivative chromosome, with 'or' alternatives"""
    alternatives: Tuple[BasicAberration, ...] = ()
    joiners: Tuple[str, ...] = ()

    def to_iscn(self) -> str:
        return _join(self.alternatives, self.joiners)


@dataclass(frozen=True)
class DerivativeAberration(Node):
    aberration_id: str = "der"
    chromosomes: Optional[Bracketed] = None
    breakpoints: Optional[Node] = None
    rearrangements: Tuple[RearrangementElement, ...] = ()
    prefix: Optional[str] = None
    mosaic: Optional[str] = None
    suffix: Optional[str] = None

    @property
    def detailed_formula(self) -> Optional[DetailedFormula]:
        return self.breakpoints if isinstance(self.breakpoints, DetailedFormula) else None

    def to_iscn(self) -> str:
        parts = [self.prefix or "", self.mosaic or "", self.aberration_id,
                 self.chromosomes.to_iscn()]
        if self.breakpoints is not None:
            parts.append(self.breakpoints.to_iscn())
        parts.extend(element.to_iscn() for element in self.rearrangements)
        parts.append(self.suffix or "")
        return "".join(parts)


@dataclass(frozen=True)
class DerivativeAberrationError(DerivativeAberration):
    stray_commas: Tuple[StrayComma, ...] = ()


@dataclass(frozen=True)
class UncertainAberration(Node):
    """Aberration on an unidentified chromosome, e.g. 'add(?)(q10)'"""
    aberration_id: str = ""
    chromosome: Optional[UncertainChromosome] = None
    breakpoints: Optional[Bracketed] = None
    prefix: Optional[str] = None
    suffix: Optional[str] = None

    def to_iscn(self) -> str:
        parts = [self.prefix or "", self.aberration_id, self.chromosome.to_iscn()]
        if self.breakpoints is not None:
            parts.append(self.breakpoints.to_iscn())
        parts.append(self.suffix or "")
        return "".join(parts)


@dataclass(frozen=True)
class Undecoded(Node):
    """Marker ('+2mar', '+mar1') or double minute ('~20dmin') notation"""
    kind: str = "mar"
    prefix: Optional[str] = None
    count: Optional[NumRange] = None
    index: Optional[int] = None
    suffix: Optional[str] = None


@dataclass(frozen=True)
class UndecodedSpecial(Node):
    """Questionable marker such as '+?mar1'"""
    prefix: Optional[str] = None
    index: Optional[int] = None


@dataclass(frozen=True)
class UndecodedEvent(Node):
    """Incomplete karyotype ('inc') or unknown event ('?')"""
    pass


@dataclass(frozen=True)
class RegEvent(Node):
    """One event, or several alternative readings joined by 'or'"""
    alternatives: Tuple[Node, ...] = ()
    joiners: Tuple[str, ...] = ()

    @property
    def is_ambiguous(self) -> bool:
        return len(self.alternatives) > 1

    def to_iscn(self) -> str:
        return _join(self.alternatives, self.joiners)


COMMA_SHAPES = ("correct", "missing", "too_many", "leading")


@dataclass(frozen=True)
class RegularEvent(Node):
    """Event together with the comma that introduces it"""
    event: Optional[RegEvent] = None
    shape: str = "correct"
    comma: str = ","

    def to_iscn(self) -> str:
        if self.shape == "leading":
            return self.comma + self.event.to_iscn()
        return "," + self.event.to_iscn()


# ============================================================================
# GENDER AND SPECIAL MARKERS
# ============================================================================

@dataclass(frozen=True)
class SexDescription(Node):
    """Sex chromosome complement; several runs when joined by 'or'"""
    runs: Tuple[str, ...] = ()
    joiners: Tuple[str, ...] = ()
    constitutional: bool = False

    def chromosomes(self) -> List[str]:
        return sorted({char.upper() for run in self.runs for char in run})


@dataclass(frozen=True)
class Gender(Node):
    sex: Optional[SexDescription] = None
    shape: str = "correct"
    comma: str = ","

    def to_iscn(self) -> str:
        return "," + self.sex.to_iscn()


@dataclass(frozen=True)
class IdemEvent(Node):
    multiplication: Optional[Multiplication] = None


@dataclass(frozen=True)
class StemlineEvent(Node):
    multiplication: Optional[Multiplication] = None


@dataclass(frozen=True)
class SidelineEvent(Node):
    number: Optional[int] = None
    multiplication: Optional[Multiplication] = None


@dataclass(frozen=True)
class SpecialMarker(Node):
    """'idem', 'sl' or 'sdl' marker together with its comma context"""
    marker: Optional[Node] = None
    shape: str = "correct"
    comma: str = ","

    def to_iscn(self) -> str:
        if self.shape == "leading":
            return self.comma + self.marker.to_iscn()
        return "," + self.marker.to_iscn()


# ============================================================================
# KARYOTYPES, CLONES AND ROWS
# ============================================================================

BODY_SHAPES = ("canonical", "missing_gender", "missing_count_and_gender",
               "special", "special_missing_count")


@dataclass(frozen=True)
class KaryotypeBody(Node):
    variant: str = "I"
    shape: str = "canonical"
    mosaic: Optional[str] = None
    count: Optional[ChromosomeCount] = None
    modal: Optional[ModalNumber] = None
    gender: Optional[Gender] = None
    special: Optional[SpecialMarker] = None
    events: Tuple[RegularEvent, ...] = ()
    cell_count: Optional[CellCount] = None

    def to_iscn(self) -> str:
        parts = [self.mosaic or ""]
        for part in (self.count, self.modal, self.gender, self.special):
            if part is not None:
                parts.append(part.to_iscn())
        parts.extend(event.to_iscn() for event in self.events)
        if self.cell_count is not None:
            parts.append(self.cell_count.to_iscn())
        return "".join(parts)


@dataclass(frozen=True)
class NonclonalBody(Node):
    """Ploidy-only description such as '4n[3]'"""
    ploidy: Optional[Ploidy] = None
    cell_count: Optional[CellCount] = None

    def to_iscn(self) -> str:
        cells = self.cell_count.to_iscn() if self.cell_count is not None else ""
        return self.ploidy.to_iscn() + cells


SEPARATION_SHAPES = ("none", "correct", "missing", "too_many", "incorrect")


@dataclass(frozen=True)
class Clone(Node):
    body: Optional[Node] = None
    role: str = "first"
    separation: str = "none"
    separator: str = ""

    def to_iscn(self) -> str:
        prefix = "" if self.separation == "none" else "/"
        return prefix + self.body.to_iscn()


@dataclass(frozen=True)
class StemlineGroup(Node):
    stemline: Optional[Clone] = None
    sidelines: Tuple[Clone, ...] = ()

    def to_iscn(self) -> str:
        return self.stemline.to_iscn() + "".join(clone.to_iscn() for clone in self.sidelines)


@dataclass(frozen=True)
class RowTypeI(Node):
    clones: Tuple[Clone, ...] = ()
    terminated: bool = False

    def all_clones(self) -> List[Clone]:
        return list(self.clones)

    def to_iscn(self) -> str:
        return "".join(clone.to_iscn() for clone in self.clones) + ("." if self.terminated else "")


@dataclass(frozen=True)
class RowTypeII(Node):
    groups: Tuple[StemlineGroup, ...] = ()
    terminated: bool = False

    def all_clones(self) -> List[Clone]:
        return [clone for group in self.groups for clone in (group.stemline,) + group.sidelines]

    def to_iscn(self) -> str:
        return "".join(group.to_iscn() for group in self.groups) + ("." if self.terminated else "")


@dataclass(frozen=True)
class InvalidRow(Node):
    """Input that no row alternative accepts"""

    def all_clones(self) -> List[Clone]:
        return []
