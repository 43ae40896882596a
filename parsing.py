"""
ISCN Karyotype Parser
Error-tolerant parser for ISCN karyotype strings with source spans and diagnostics
"""

from typing import List, Dict, Any, Optional, Tuple, Callable
from dataclasses import dataclass, fields, replace
from functools import partial
import re

# Import pyparsing with error handling
try:
    from pyparsing import (
        Literal, Regex, Opt, ZeroOrMore, OneOrMore, MatchFirst, FollowedBy,
        Located, StringEnd, ParserElement, ParseException, one_of,
    )
    # Enable packrat parsing: every alternative below backtracks
    ParserElement.enable_packrat()
except ImportError:
    raise ImportError("pyparsing library not found. Install with: pip install pyparsing")

from syntax_tree import (
    Node, SourceSpan, NumRange, ChromosomeCount, Chromosome, Breakpoint, Fragment,
    Multiplication, Ploidy, ChromosomeElement, BreakpointRun, BreakpointGroup,
    DetailedElement, ElementRun, Bracketed, BRACKET_SHAPES, COMMA_SHAPES, BODY_SHAPES,
    SEPARATION_SHAPES, ChromosomeList, BreakpointsList, DetailedBreakpointsList,
    DerivativeChromosomeList, DerivativeBreakpointsList, UncertainChromosome, ModalNumber,
    CellNumContent, CellCount, DetailedBreakpoint, DetailedSegment, DetailedFormula, StrayComma,
    GainLossChromosome, BasicAberration, BasicAberrationError, RearrangementElement,
    DerivativeAberration, DerivativeAberrationError, UncertainAberration, Undecoded,
    UndecodedSpecial, UndecodedEvent, RegEvent, RegularEvent, SexDescription, Gender,
    IdemEvent, StemlineEvent, SidelineEvent, SpecialMarker, KaryotypeBody,
    NonclonalBody, Clone, StemlineGroup, RowTypeI, RowTypeII, InvalidRow,
)
from error_handling import (
    Diagnostic, KaryotypeParseError, collect_diagnostics, relocate_diagnostic,
    serialize_diagnostic,
)
from utilities import normalize_karyotype, read_karyotype_lines


ABERRATION_IDS = ("idic dic del dup add ins inv trp qdp hsr fis fra tas rob rcp "
                  "tan trc upd pcc psu neo t i r")
DERIVATIVE_IDS = "ider der"

BREAKPOINT_RE = re.compile(
    r"(?P<uncertain>\?)?"
    r"(?:(?P<terminal>pter|qter|cen)"
    r"|(?P<arm>[pq])(?!at)(?P<band>\d+(?:[~-]\d+)?|\?)?(?P<subband>\.\d+(?:[~-]\d+)?)?)"
    r"|\?"
)


@dataclass(frozen=True)
class Token:
    """Karyotype token with source information"""
    type: str
    value: str
    span: SourceSpan

    def __str__(self) -> str:
        return f"{self.type}({self.value})"


@dataclass(frozen=True)
class Tag:
    """Labelled scalar picked out of a parse action's token list"""
    kind: str
    value: str


class KaryotypeTokenizerError(Exception):
    """Karyotype tokenization error"""
    pass


class KaryotypeTokenizer:
    """Splits raw karyotype text into the token kinds of ISCN notation"""

    def __init__(self):
        self._setup_token_patterns()

    def _setup_token_patterns(self):
        """Setup all token patterns"""
        self.whitespace_pattern = re.compile(r'\s+')
        self.digits_pattern = re.compile(r'\d+')
        self.letters_pattern = re.compile(r'[A-Za-z]+')

        # Compound symbols first, then single characters
        self.symbols = {
            '->': 'ARROW', '::': 'DOUBLECOLON',
            '~': 'APPROX', '+': 'PLUS', '-': 'MINUS', '?': 'QUES',
            ':': 'COLON', ';': 'SEMICOLON', ',': 'COMMA', '/': 'SLANT', '.': 'DOT',
            '(': 'LPAREN', ')': 'RPAREN', '[': 'LBRACKET', ']': 'RBRACKET',
            '{': 'LBRACE', '}': 'RBRACE', '<': 'LANGLE', '>': 'RANGLE',
            '×': 'TIMES', '|': 'PIPE', '\\': 'BACKSLASH', '"': 'QUOTE', "'": 'QUOTE',
        }
        symbols_sorted = sorted(self.symbols, key=len, reverse=True)
        self.symbol_pattern = re.compile('|'.join(re.escape(s) for s in symbols_sorted))

    def tokenize(self, text: str) -> List[Token]:
        """Tokenize karyotype text, keeping whitespace tokens"""
        tokens = []
        pos = 0
        while pos < len(text):
            token = self._match_token_at_position(text, pos)
            if token is None:
                raise KaryotypeTokenizerError(f"Unknown character '{text[pos]}' at offset {pos}")
            tokens.append(token)
            pos = token.span.end
        return tokens

    def _match_token_at_position(self, text: str, pos: int) -> Optional[Token]:
        """Match a token at a specific position using priority order"""

        # Priority 1: whitespace runs
        match = self.whitespace_pattern.match(text, pos)
        if match:
            return self._make_token('WS', match)

        # Priority 2: digit runs
        match = self.digits_pattern.match(text, pos)
        if match:
            return self._make_token('DIGITS', match)

        # Priority 3: letter runs (ids, arms, sex chromosomes)
        match = self.letters_pattern.match(text, pos)
        if match:
            return self._make_token('LETTERS', match)

        # Priority 4: symbols, longest first
        match = self.symbol_pattern.match(text, pos)
        if match:
            return self._make_token(self.symbols[match.group()], match)

        return None

    def _make_token(self, token_type: str, match) -> Token:
        span = SourceSpan(match.start(), match.end(), match.group())
        return Token(token_type, match.group(), span)


# ============================================================================
# PARSE ACTION HELPERS
# ============================================================================

def located(expr: ParserElement, builder: Callable[[SourceSpan, List[Any]], Node]) -> ParserElement:
    """Wrap expr so that builder receives its source span and flat token list"""
    def action(s, loc, toks):
        start, inner, end = toks[0], toks[1], toks[2]
        return builder(SourceSpan(start, end, s[start:end]), list(inner))
    return Located(expr).set_parse_action(action)


def tagged(expr: ParserElement, kind: str) -> ParserElement:
    return expr.copy().set_parse_action(lambda s, loc, toks: Tag(kind, "".join(toks)))


def _nodes(tokens: List[Any], cls: type = Node) -> List[Any]:
    return [t for t in tokens if isinstance(t, cls)]


def _first(tokens: List[Any], cls: type) -> Optional[Any]:
    for token in tokens:
        if isinstance(token, cls):
            return token
    return None


def _tags(tokens: List[Any]) -> Dict[str, str]:
    return {t.kind: t.value for t in tokens if isinstance(t, Tag)}


def _strings(tokens: List[Any]) -> List[str]:
    return [t for t in tokens if isinstance(t, str)]


def _optional_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value else None


# ============================================================================
# NODE BUILDERS
# ============================================================================

def _build_range(span, tokens):
    parts = _strings(tokens)
    if len(parts) == 1:
        return NumRange(span, low=int(parts[0]))
    if len(parts) == 2:
        return NumRange(span, high=int(parts[1]), operator=parts[0])
    return NumRange(span, low=int(parts[0]), high=int(parts[2]), operator=parts[1])


def _build_count(span, tokens):
    return ChromosomeCount(span, value=_first(tokens, NumRange), uncertain="?" in _strings(tokens))


def _build_chromosome(span, tokens):
    return Chromosome(span, name=span.text.lstrip("?"), uncertain=span.text.startswith("?"))


def _build_breakpoint(span, tokens):
    match = BREAKPOINT_RE.fullmatch(span.text)
    arm = match.group("terminal") or match.group("arm") or "?"
    subband = match.group("subband")
    return Breakpoint(
        span,
        arm=arm,
        band=match.group("band"),
        subband=subband[1:] if subband else None,
        uncertain=bool(match.group("uncertain")) or arm == "?",
    )


def _build_alternatives(cls, span, tokens):
    return cls(span, alternatives=tuple(_nodes(tokens)), joiners=tuple(_strings(tokens)))


def _build_run(correct, span, tokens):
    return ElementRun(span, elements=tuple(_nodes(tokens)), correct=correct)


def _build_bracketed(cls, shape, span, tokens):
    return cls(span, content=_nodes(tokens)[0], shape=shape)


def _build_cell_content(shape, span, tokens):
    digits = re.search(r"\d+", span.text)
    return CellNumContent(
        span,
        cells=int(digits.group()) if digits else 0,
        composite="cp" in span.text,
        shape=shape,
    )


def _build_commaed(cls, field_name, shape, span, tokens):
    comma = "".join(_strings(tokens))
    return cls(span, shape=shape, comma=comma, **{field_name: _nodes(tokens)[0]})


def _build_sex(span, tokens):
    runs, joiners, constitutional = [], [], False
    for token in _strings(tokens):
        if token == "c":
            constitutional = True
        elif token in ("or", "/or/"):
            joiners.append(token)
        else:
            runs.append(token)
    return SexDescription(span, runs=tuple(runs), joiners=tuple(joiners), constitutional=constitutional)


def _build_multiplication(span, tokens):
    return Multiplication(span, factor=int(_strings(tokens)[-1]))


def _build_sideline(span, tokens):
    numbers = [t for t in _strings(tokens) if t.isdigit()]
    return SidelineEvent(
        span,
        number=int(numbers[0]) if numbers else None,
        multiplication=_first(tokens, Multiplication),
    )


def _build_gain_loss(shape, span, tokens):
    tags = _tags(tokens)
    return GainLossChromosome(
        span,
        sign=_strings(tokens)[0],
        chromosome=_first(tokens, Chromosome),
        suffix=tags.get("suffix"),
        shape=shape,
    )


def _pair_stray_commas(tokens):
    commas = []
    for index, token in enumerate(tokens):
        if isinstance(token, StrayComma):
            following = _first(tokens[index + 1:], (Bracketed, DetailedFormula))
            commas.append(replace(token, following=following.span.text if following is not None else ""))
    return tuple(commas)


def _build_basic(cls, span, tokens):
    tags = _tags(tokens)
    lists = _nodes(tokens, Bracketed)
    extra = {"stray_commas": _pair_stray_commas(tokens)} if cls is BasicAberrationError else {}
    return cls(
        span,
        aberration_id=tags["id"],
        chromosomes=lists[0],
        breakpoints=lists[1] if len(lists) > 1 else None,
        prefix=tags.get("prefix"),
        mosaic=tags.get("mosaic"),
        suffix=tags.get("suffix"),
        **extra
    )


def _build_derivative(cls, span, tokens):
    tags = _tags(tokens)
    extra = {"stray_commas": _pair_stray_commas(tokens)} if cls is DerivativeAberrationError else {}
    return cls(
        span,
        aberration_id=tags["id"],
        chromosomes=_first(tokens, DerivativeChromosomeList),
        breakpoints=_first(tokens, DetailedFormula) or _first(tokens, DerivativeBreakpointsList),
        rearrangements=tuple(_nodes(tokens, RearrangementElement)),
        prefix=tags.get("prefix"),
        mosaic=tags.get("mosaic"),
        suffix=tags.get("suffix"),
        **extra
    )


def _build_uncertain(span, tokens):
    tags = _tags(tokens)
    return UncertainAberration(
        span,
        aberration_id=tags["id"],
        chromosome=_first(tokens, UncertainChromosome),
        breakpoints=_first(tokens, BreakpointsList),
        prefix=tags.get("prefix"),
        suffix=tags.get("suffix"),
    )


def _build_undecoded(kind, span, tokens):
    tags = _tags(tokens)
    return Undecoded(
        span,
        kind=kind,
        prefix=tags.get("prefix"),
        count=_first(tokens, NumRange),
        index=_optional_int(tags.get("index")),
        suffix=tags.get("suffix"),
    )


def _build_detailed_segment(span, tokens):
    if "hsr" in _strings(tokens):
        return DetailedSegment(span, hsr=True)
    points = _nodes(tokens, DetailedBreakpoint)
    return DetailedSegment(span, start=points[0], end=points[1] if len(points) > 1 else None)


def _build_detailed_formula(span, tokens):
    # tokens: '(' ['::'] segment ('::' segment)* ['::'] ')'
    return DetailedFormula(
        span,
        segments=tuple(_nodes(tokens, DetailedSegment)),
        ring_open=isinstance(tokens[1], str) and tokens[1] == "::",
        ring_close=isinstance(tokens[-2], str) and tokens[-2] == "::",
    )


def _build_body(variant, shape, span, tokens):
    tags = _tags(tokens)
    return KaryotypeBody(
        span,
        variant=variant,
        shape=shape,
        mosaic=tags.get("mosaic"),
        count=_first(tokens, ChromosomeCount),
        modal=_first(tokens, ModalNumber),
        gender=_first(tokens, Gender),
        special=_first(tokens, SpecialMarker),
        events=tuple(_nodes(tokens, RegularEvent)),
        cell_count=_first(tokens, CellCount),
    )


def _build_clone(role, separation, span, tokens):
    return Clone(
        span,
        body=_nodes(tokens)[0],
        role=role,
        separation=separation,
        separator="".join(_strings(tokens)),
    )


def _build_group(span, tokens):
    clones = _nodes(tokens, Clone)
    return StemlineGroup(span, stemline=clones[0], sidelines=tuple(clones[1:]))


def _build_row(cls, field_name, span, tokens):
    items = tuple(_nodes(tokens))
    return cls(span, terminated="terminator" in _tags(tokens), **{field_name: items})


class KaryotypeGrammar:
    """Karyotype grammar using pyparsing.

    Every rule is an ordered choice: the well-formed shape first, then the
    specific malformed shapes. Malformed shapes build the same node types
    with a shape label; diagnostics are derived from those labels afterwards.
    """

    def __init__(self, debug: bool = False):
        self.debug = debug
        self._setup_grammar()

    def _setup_grammar(self):
        """Setup the complete karyotype grammar, leaves first"""
        self._setup_primitives()
        self._setup_lists()
        self._setup_events()
        self._setup_karyotypes()
        self._setup_rows()

    def _setup_primitives(self):
        self.integer = Regex(r"\d+")
        self.comma = Literal(",")
        self.commas = Regex(r",{2,}")
        self.ques = Literal("?")
        range_op = Regex(r"[~-]")

        # Ranges: type I 'N' / 'N~M', type II 'N~M', type III '~N'
        self.range_i = located(self.integer + Opt(range_op + self.integer), _build_range)
        self.range_ii = located(self.integer + range_op + self.integer, _build_range)
        self.range_iii = located(range_op + self.integer, _build_range)

        # '693n>' is count 69 with modal 3n: stop the count before bare modal content
        count_before_modal = Regex(r"\d+(?=[~+\-]?\d+n(?:[+\-]{1,2})?(?![a-z]))")
        range_before_modal = located(Opt(self.integer + range_op) + count_before_modal, _build_range)
        self.chromosome_count = located(
            Opt(self.ques) + (range_before_modal | self.range_i) | self.ques, _build_count)
        self.chromosome = located(Regex(r"\??(?:\d{1,2}|[XYxy])"), _build_chromosome)
        self.breakpoint = located(Regex(BREAKPOINT_RE.pattern), _build_breakpoint)
        self.ploidy = located(Regex(r"\d+n(?![a-z])"), lambda span, toks: Ploidy(span, level=span.text))
        self.multiplication = located(Regex(r"[x×]") + self.integer, _build_multiplication)

        self.prefix = tagged(Regex(r"[+\-]\??|\?"), "prefix")
        self.mosaic = tagged(one_of("mos chi"), "mosaic")
        self.suffix = tagged(Regex(r"(?:mat|pat|dn|inh|c)(?![a-z])"), "suffix")
        self.element_joiner = Regex(r"/or/|or|::")
        self.event_joiner = Regex(r"/or/|or")

        self.any_open = Regex(r"[(\[{<]")
        self.any_close = Regex(r"[)\]}>]")

        # Lookahead for the end of a karyotype body: next clone, separator or end
        self.body_end = StringEnd() | Regex(r"[/;:\\|.\d?]|mos|chi|,+(?=[\d?]|mos|chi)")

    # ------------------------------------------------------------------------
    # Lists and brackets
    # ------------------------------------------------------------------------

    def _element_run(self, element: ParserElement) -> ParserElement:
        """';'-separated elements, or the same elements joined by wrong separators"""
        wrong_sep = Regex(r"[,.]|:(?!:)")
        any_sep = Regex(r"[;,.]|:(?!:)")
        correct = element + ZeroOrMore(Literal(";") + element) + ~(wrong_sep + element)
        incorrect = element + OneOrMore(any_sep + element)
        return (located(correct, partial(_build_run, True))
                | located(incorrect, partial(_build_run, False)))

    def _bracketed(self, content: ParserElement, node_cls: type,
                   shapes: Tuple[str, ...] = BRACKET_SHAPES,
                   guard: Optional[ParserElement] = None) -> ParserElement:
        """Five-way bracket pattern shared by every bracketed construct"""
        open_, close = Literal(node_cls.OPEN), Literal(node_cls.CLOSE)
        missing_both = content + ~self.any_close
        if guard is not None:
            missing_both = missing_both + guard
        forms = {
            "correct": open_ + content + close,
            "missing_open": content + close,
            "missing_close": open_ + content + ~self.any_close,
            "missing_both": missing_both,
            "wrong_bracket": self.any_open + content + self.any_close,
        }
        return MatchFirst([located(forms[shape], partial(_build_bracketed, node_cls, shape))
                           for shape in shapes])

    def _setup_lists(self):
        chromosome_element = located(
            self.chromosome + ZeroOrMore(self.element_joiner + self.chromosome),
            partial(_build_alternatives, ChromosomeElement))
        breakpoint_run = located(
            OneOrMore(self.breakpoint),
            lambda span, toks: BreakpointRun(span, breakpoints=tuple(_nodes(toks))))
        breakpoint_group = located(
            breakpoint_run + ZeroOrMore(self.element_joiner + breakpoint_run),
            partial(_build_alternatives, BreakpointGroup))
        detailed_element = located(
            self.chromosome + OneOrMore(self.breakpoint),
            lambda span, toks: DetailedElement(span, chromosome=toks[0], breakpoints=tuple(toks[1:])))

        chromosome_run = self._element_run(chromosome_element)
        breakpoint_run_list = self._element_run(breakpoint_group)

        self.chromosome_list = self._bracketed(chromosome_run, ChromosomeList)
        self.breakpoints_list = self._bracketed(breakpoint_run_list, BreakpointsList)
        self.detailed_breakpoints_list = self._bracketed(
            self._element_run(detailed_element), DetailedBreakpointsList)
        self.derivative_chromosome_list = self._bracketed(chromosome_run, DerivativeChromosomeList)
        self.derivative_breakpoints_list = self._bracketed(breakpoint_run_list, DerivativeBreakpointsList)

        uncertain_content = located(Regex(r"\?(?:\d{1,2}|[XYxy])?[pq]?"),
                                    lambda span, toks: Fragment(span))
        self.uncertain_chromosome = self._bracketed(uncertain_content, UncertainChromosome)

        modal_content = located(Regex(r"[~+\-]?\d+n(?:[+\-]{1,2})?"),
                                lambda span, toks: Fragment(span))
        self.modal_number = self._bracketed(modal_content, ModalNumber)

        cell_content = MatchFirst([
            located(Regex(r"cp\d+(?![a-z\d])"), partial(_build_cell_content, "correct")),
            located(Regex(r"\d+(?![a-z\d])"), partial(_build_cell_content, "correct")),
            located(Regex(r"\d+cp(?![a-z\d])"), partial(_build_cell_content, "cp_suffix")),
            located(Regex(r"(?:cp)?\d+(?:cp)?cells?|cells?(?:cp)?\d+"),
                    partial(_build_cell_content, "cell_word")),
        ])
        # A bare number only counts as cells right before a clone boundary
        strict_end = FollowedBy(StringEnd() | Regex(r"[/;:\\|.]"))
        self.cell_count = self._bracketed(cell_content, CellCount, guard=strict_end)

        # Detailed formula: der(13)(13pter->13q10::15q10->15qter)
        ring = Literal("::")
        detailed_point = located(
            self.chromosome + self.breakpoint,
            lambda span, toks: DetailedBreakpoint(span, chromosome=toks[0], breakpoint=toks[1]))
        segment = (located(detailed_point + Literal("->") + detailed_point, _build_detailed_segment)
                   | located(Literal("hsr"), _build_detailed_segment)
                   | located(detailed_point, _build_detailed_segment))
        self.detailed_formula = located(
            Literal("(") + Opt(ring) + segment + ZeroOrMore(ring + segment) + Opt(ring) + Literal(")"),
            _build_detailed_formula)

    # ------------------------------------------------------------------------
    # Events and aberrations
    # ------------------------------------------------------------------------

    def _setup_events(self):
        aberration_id = tagged(one_of(ABERRATION_IDS), "id")
        derivative_id = tagged(one_of(DERIVATIVE_IDS), "id")
        prefix, mosaic, suffix = Opt(self.prefix), Opt(self.mosaic), Opt(self.suffix)
        stray_comma = located(self.comma, lambda span, toks: StrayComma(span))
        no_stray_comma = ~(self.comma + self.any_open)

        chr_list = self.chromosome_list
        bp_list = self.breakpoints_list
        detailed_list = self.detailed_breakpoints_list

        # Basic aberrations: the folded del(5q13q33) form before del(5)(q13q33)
        self.basic_aberration = MatchFirst([
            located(prefix + mosaic + aberration_id + detailed_list + suffix + no_stray_comma,
                    partial(_build_basic, BasicAberration)),
            located(prefix + mosaic + aberration_id + chr_list + Opt(bp_list) + suffix + no_stray_comma,
                    partial(_build_basic, BasicAberration)),
        ])
        self.basic_aberration_error = located(
            prefix + mosaic + aberration_id + Opt(stray_comma) + (detailed_list | chr_list)
            + Opt(Opt(stray_comma) + bp_list) + suffix,
            partial(_build_basic, BasicAberrationError))

        rearrangement = located(
            aberration_id + (detailed_list | chr_list + Opt(bp_list)),
            partial(_build_basic, BasicAberration))
        rearrangement_element = located(
            rearrangement + ZeroOrMore(self.event_joiner + rearrangement),
            partial(_build_alternatives, RearrangementElement))

        der_list = self.derivative_chromosome_list
        der_breakpoints = self.detailed_formula | self.derivative_breakpoints_list
        self.derivative_aberration = located(
            prefix + mosaic + derivative_id + der_list + Opt(der_breakpoints)
            + ZeroOrMore(rearrangement_element) + suffix + no_stray_comma,
            partial(_build_derivative, DerivativeAberration))
        self.derivative_aberration_error = located(
            prefix + mosaic + derivative_id + Opt(stray_comma) + der_list
            + Opt(Opt(stray_comma) + der_breakpoints) + ZeroOrMore(rearrangement_element) + suffix,
            partial(_build_derivative, DerivativeAberrationError))

        self.uncertain_aberration = located(
            prefix + aberration_id + self.uncertain_chromosome + Opt(bp_list) + suffix,
            _build_uncertain)

        # Markers and double minutes, five shapes
        undecoded_prefix = Opt(tagged(Regex(r"[+\-]"), "prefix"))
        mar, dmin = Literal("mar"), Literal("dmin")
        mar_index = Opt(tagged(self.integer, "index"))
        self.undecoded = MatchFirst([
            located(undecoded_prefix + self.range_i + mar + mar_index + suffix, partial(_build_undecoded, "mar")),
            located(undecoded_prefix + mar + mar_index + suffix, partial(_build_undecoded, "mar")),
            located(undecoded_prefix + self.range_i + dmin + suffix, partial(_build_undecoded, "dmin")),
            located(undecoded_prefix + self.range_iii + dmin + suffix, partial(_build_undecoded, "dmin")),
            located(undecoded_prefix + dmin + suffix, partial(_build_undecoded, "dmin")),
        ])
        self.undecoded_special = located(
            undecoded_prefix + Literal("?mar") + mar_index,
            lambda span, toks: UndecodedSpecial(span, prefix=_tags(toks).get("prefix"),
                                                index=_optional_int(_tags(toks).get("index"))))
        self.undecoded_event = located(Regex(r"inc(?![a-z])|\?"), lambda span, toks: UndecodedEvent(span))

        self.aberration = (
            self.undecoded
            | self.derivative_aberration
            | self.basic_aberration
            | self.uncertain_aberration
            | self.derivative_aberration_error
            | self.basic_aberration_error
        )

        self.gain_loss = MatchFirst([
            located(Literal("+") + self.chromosome + suffix, partial(_build_gain_loss, "gain")),
            located(Literal("-") + self.chromosome + suffix, partial(_build_gain_loss, "loss")),
            located(Regex(r"\+-|-\+") + Opt(self.chromosome) + suffix, partial(_build_gain_loss, "undetermined")),
        ])

        reg_event_type = self.undecoded_special | self.aberration | self.undecoded_event | self.gain_loss
        self.reg_event = located(
            reg_event_type + ZeroOrMore(self.event_joiner + reg_event_type),
            partial(_build_alternatives, RegEvent))

        self.event = self._commaed(self.reg_event, RegularEvent, "event")
        self.lead_event = located(Opt(self.comma) + self.reg_event,
                                  partial(_build_commaed, RegularEvent, "event", "leading"))

    # ------------------------------------------------------------------------
    # Karyotype bodies
    # ------------------------------------------------------------------------

    def _commaed(self, item: ParserElement, node_cls: type, field_name: str) -> ParserElement:
        """Three-way comma pattern: ',item', 'item', ',,item'"""
        forms = {
            "correct": self.comma + item,
            "missing": item,
            "too_many": self.commas + item,
        }
        return MatchFirst([located(forms[shape], partial(_build_commaed, node_cls, field_name, shape))
                           for shape in COMMA_SHAPES if shape in forms])

    def _special(self, marker: ParserElement) -> Tuple[ParserElement, ParserElement]:
        special = self._commaed(marker, SpecialMarker, "marker")
        leading = located(Opt(self.comma) + marker,
                          partial(_build_commaed, SpecialMarker, "marker", "leading"))
        return special, leading

    def _karyotype(self, variant: str, shapes: Tuple[str, ...],
                   marker: Optional[ParserElement] = None) -> ParserElement:
        """Ordered body alternatives of one karyotype variant"""
        count, modal = self.chromosome_count, Opt(self.modal_number)
        mosaic = Opt(self.mosaic)
        tail = ZeroOrMore(self.event) + Opt(self.cell_count) + FollowedBy(self.body_end)
        forms = {
            "canonical": mosaic + count + modal + self.gender + tail,
            "missing_gender": mosaic + count + modal + tail,
            "missing_count_and_gender": mosaic + self.lead_event + tail,
        }
        if marker is not None:
            special, leading = self._special(marker)
            forms["special"] = mosaic + count + modal + special + tail
            forms["special_missing_count"] = mosaic + leading + tail
        return MatchFirst([located(forms[shape], partial(_build_body, variant, shape))
                           for shape in shapes])

    def _setup_karyotypes(self):
        sex_run = Regex(r"[XYxy]+")
        sex = located(sex_run + ZeroOrMore(self.event_joiner + sex_run) + Opt(Literal("c")), _build_sex)
        self.gender = self._commaed(sex, Gender, "sex")

        multiplication = Opt(self.multiplication)
        self.idem = located(Literal("idem") + multiplication,
                            lambda span, toks: IdemEvent(span, multiplication=_first(toks, Multiplication)))
        self.stemline_mark = located(Literal("sl") + multiplication,
                                     lambda span, toks: StemlineEvent(span, multiplication=_first(toks, Multiplication)))
        self.sideline_mark = located(Literal("sdl") + Opt(self.integer) + multiplication, _build_sideline)

        normal, special = BODY_SHAPES[:3], BODY_SHAPES[3:]
        self.karyotypes = {
            "I": self._karyotype("I", normal),
            "II": self._karyotype("II", normal + special, self.idem),
            "III": self._karyotype("III", normal),
            "IV": self._karyotype("IV", special, self.stemline_mark),
            "V": self._karyotype("V", special, self.sideline_mark),
        }
        self.nonclonal = located(self.ploidy + Opt(self.cell_count) + FollowedBy(self.body_end),
                                 lambda span, toks: NonclonalBody(span, ploidy=toks[0], cell_count=_first(toks, CellCount)))

    # ------------------------------------------------------------------------
    # Clones and rows
    # ------------------------------------------------------------------------

    def _separated(self, body: ParserElement, role: str) -> ParserElement:
        """Four-way clone separation: '/', nothing, '//', other punctuation"""
        forms = {
            "correct": Literal("/") + body,
            "missing": body,
            "too_many": Regex(r"/{2,}") + body,
            "incorrect": Regex(r"[/;:\\|,]+") + body,
        }
        return MatchFirst([located(forms[shape], partial(_build_clone, role, shape))
                           for shape in SEPARATION_SHAPES if shape in forms])

    def _setup_rows(self):
        terminator = Opt(tagged(Literal("."), "terminator"))
        karyotypes = self.karyotypes

        first_clone = located(karyotypes["I"], partial(_build_clone, "first", "none"))
        clone = self._separated(karyotypes["II"], "clone")
        nonclonal_clone = self._separated(self.nonclonal, "nonclonal")
        self.row_type_i = located(
            first_clone + ZeroOrMore(nonclonal_clone | clone) + terminator + StringEnd(),
            partial(_build_row, RowTypeI, "clones"))

        stemline_clone = located(karyotypes["III"], partial(_build_clone, "stemline", "none"))
        sideline_clone = (self._separated(karyotypes["IV"], "sideline")
                          | self._separated(karyotypes["V"], "sideline"))
        first_group = located(stemline_clone + ZeroOrMore(sideline_clone), _build_group)
        other_group = located(self._separated(karyotypes["III"], "stemline") + ZeroOrMore(sideline_clone),
                              _build_group)
        self.row_type_ii = located(
            first_group + ZeroOrMore(other_group) + terminator + StringEnd(),
            partial(_build_row, RowTypeII, "groups"))

        invalid = located(Regex(r"[\s\S]*"), lambda span, toks: InvalidRow(span))
        self.row = self.row_type_i | self.row_type_ii | invalid

    def parse_row(self, text: str) -> Node:
        """Parse normalized karyotype text into a row node"""
        try:
            result = self.row.parse_string(text, parse_all=True)
        except ParseException as e:
            raise KaryotypeParseError(f"Parse error at offset {e.loc}: {e.msg}", text) from e
        row = result[0]
        if self.debug:
            print(f"[grammar] {text!r} -> {row.type_name}")
        return row


@dataclass(frozen=True)
class ParseResult:
    """Tree and diagnostics for one karyotype"""
    source: str
    text: str
    row: Node
    diagnostics: Tuple[Diagnostic, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    @property
    def is_fatal(self) -> bool:
        return isinstance(self.row, InvalidRow)

    @property
    def clones(self) -> List[Clone]:
        return self.row.all_clones()

    @property
    def revised(self) -> Optional[str]:
        """Corrected karyotype when the input had recoverable issues.

        None when nothing could be corrected, e.g. an undetermined '+-21'
        renders exactly as written.
        """
        if self.ok or self.is_fatal:
            return None
        rendered = self.row.to_iscn()
        return rendered if rendered != self.text else None

    def serialized_diagnostics(self) -> List[str]:
        return [serialize_diagnostic(diag) for diag in self.diagnostics]


class KaryotypeParser:
    """Main karyotype parser combining normalization, grammar and diagnostics"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.grammar = KaryotypeGrammar(debug)

    def parse(self, source: str) -> ParseResult:
        """Parse one karyotype; never raises for malformed karyotypes"""
        text, offsets = normalize_karyotype(source)
        if self.debug:
            print(f"[parser] normalized input: {text!r}")
        row = self.grammar.parse_row(text)
        diagnostics = tuple(relocate_diagnostic(diag, offsets) for diag in collect_diagnostics(row))
        if self.debug:
            print(f"[parser] {len(diagnostics)} diagnostic(s)")
        return ParseResult(source, text, row, diagnostics)

    def parse_strict(self, source: str) -> ParseResult:
        """Parse one karyotype, raising KaryotypeParseError on any diagnostic"""
        result = self.parse(source)
        if result.diagnostics:
            raise KaryotypeParseError(f"Invalid karyotype: {source}", source, result.diagnostics)
        return result

    def parse_file(self, filepath: str) -> List[Tuple[int, ParseResult]]:
        """Parse a file holding one karyotype per line"""
        try:
            entries = read_karyotype_lines(filepath)
        except FileNotFoundError:
            raise KaryotypeParseError(f"File not found: {filepath}")
        except UnicodeDecodeError as e:
            raise KaryotypeParseError(f"Cannot decode file {filepath}: {e}")
        return [(line_num, self.parse(text)) for line_num, text in entries]

    def tokenize(self, text: str) -> List[Token]:
        """Tokenize karyotype text"""
        return KaryotypeTokenizer().tokenize(text)


# Factory functions for creating parsers
def create_parser(debug: bool = False) -> KaryotypeParser:
    """Create a karyotype parser"""
    return KaryotypeParser(debug=debug)


def create_debug_parser() -> KaryotypeParser:
    """Create a karyotype parser with debug enabled"""
    return KaryotypeParser(debug=True)


def parse_karyotype(source: str) -> ParseResult:
    return create_parser().parse(source)


# Utility functions for working with the syntax tree
def find_nodes_by_type(tree: Node, node_type: type) -> List[Node]:
    """Find all nodes of a given class (subclasses included)"""
    return [node for node in tree.walk() if isinstance(node, node_type)]


def _scalar_fields(node: Node) -> Dict[str, Any]:
    values = {}
    for f in fields(node):
        value = getattr(node, f.name)
        if f.name == "span" or isinstance(value, (Node, tuple)) or value is None:
            continue
        values[f.name] = value
    return values


def pretty_print_tree(tree: Node, indent: int = 0) -> str:
    """Pretty print a syntax tree for debugging"""
    details = ", ".join(f"{key}={value!r}" for key, value in _scalar_fields(tree).items())
    result = "  " * indent + f"{tree.type_name} {tree.span.text!r}"
    if details:
        result += f" [{details}]"
    result += "\n"

    for child in tree.iter_children():
        result += pretty_print_tree(child, indent + 1)

    return result


def _value_to_dict(value: Any) -> Any:
    if isinstance(value, Node):
        return tree_to_dict(value)
    if isinstance(value, tuple):
        return [_value_to_dict(item) for item in value]
    return value


def tree_to_dict(tree: Node) -> Dict[str, Any]:
    """Convert a syntax tree to a JSON-ready dictionary"""
    result = {
        "type": tree.type_name,
        "span": {"start": tree.span.start, "end": tree.span.end, "text": tree.span.text},
    }
    for f in fields(tree):
        if f.name != "span":
            result[f.name] = _value_to_dict(getattr(tree, f.name))
    return result


if __name__ == "__main__":
    # Example usage
    parser = create_debug_parser()

    for example in ("46,XY,t(9;22)(q34;q11.2)", "46XX", "47,XX,+21[20]/46,XX[5]"):
        result = parser.parse(example)
        print(pretty_print_tree(result.row))
        for line in result.serialized_diagnostics():
            print(f"  {line}")
