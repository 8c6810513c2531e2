"""Timestamp expressions for marker start and end fields.

Three forms are accepted:

* raw milliseconds (``90000``)
* clock time, ``[hh:]mm:ss[.mmm]`` (``1:30.5``)
* ``=`` expressions that combine clock times with a reference to an
  existing marker, e.g. ``=I2+500`` (500ms after the end of the second
  intro marker) or ``=C@M-1S-2:00`` (a credits marker starting two minutes
  before the start of the last marker).

Text is tokenized, parsed into a small AST, and only then evaluated
against the markers of the target item.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Union

from markereditor.plex.markers import MarkerType, sort_markers

logger = logging.getLogger(__name__)

_TIME_PATTERN = re.compile(
    r"^(?P<neg>-)?(?:(?P<first>\d?\d):)?(?:(?P<second>\d?\d):)?"
    r"(?P<seconds>\d?\d)?(?:\.(?P<fraction>\d{0,3}))?$"
)
_MARKER_REF_PATTERN = re.compile(r"(?P<type>[MICA])(?P<index>-?\d+)(?P<se>[SE])?")
_ONLY_DIGITS = re.compile(r"^-?\d+$")
_TIME_CHARS = frozenset("0123456789.:")

# Expression keys for marker types; None matches any type.
TYPE_KEYS = {
    "M": None,
    "I": MarkerType.INTRO,
    "C": MarkerType.CREDITS,
    "A": MarkerType.COMMERCIAL,
}


def time_to_ms(value: str, allow_negative: bool = False) -> Optional[int]:
    """Parse ``[hh:]mm:ss[.mmm]`` or raw millisecond text.

    Args:
        value: Text to parse
        allow_negative: Whether a leading '-' is accepted

    Returns:
        Milliseconds, or None if the text isn't a valid timestamp
    """
    if ":" not in value and "." not in value:
        if not _ONLY_DIGITS.match(value):
            return None
        ms = int(value)
        return ms if allow_negative or ms >= 0 else None

    match = _TIME_PATTERN.match(value)
    if not match or (match["neg"] and not allow_negative):
        return None
    if match["seconds"] is None and not match["fraction"]:
        return None

    ms = 0
    fraction = match["fraction"]
    if fraction:
        ms = int(fraction) * (10 ** (3 - len(fraction)))

    seconds = int(match["seconds"] or 0)
    first, second = match["first"], match["second"]
    if (first or second) and seconds > 59:
        return None
    ms += seconds * 1000

    if first and second:
        if int(second) > 59:
            return None
        ms += int(first) * 3600000 + int(second) * 60000
    elif first:
        ms += int(first) * 60000

    return -ms if match["neg"] else ms


def ms_to_hms(ms: int, minify: bool = False) -> str:
    """Format milliseconds as ``[h:]mm:ss.mmm``.

    Args:
        ms: Milliseconds, may be negative
        minify: Drop leading zero units and a zero fraction

    Returns:
        Formatted timestamp
    """
    sign = "-" if ms < 0 else ""
    ms = abs(ms)
    hours = ms // 3600000
    minutes = (ms // 60000) % 60
    seconds = (ms // 1000) % 60
    thousandths = ms % 1000
    if not minify:
        time_str = f"{minutes:02d}:{seconds:02d}.{thousandths:03d}"
        return f"{sign}{hours}:{time_str}" if hours else f"{sign}{time_str}"

    if hours:
        time_str = f"{hours}:{minutes:02d}:{seconds:02d}"
    elif minutes:
        time_str = f"{minutes}:{seconds:02d}"
    else:
        time_str = f"{seconds}"
    if thousandths:
        time_str += f".{thousandths:03d}".rstrip("0")
    elif not hours and not minutes:
        # Keep a separator so the value isn't read back as raw milliseconds
        time_str += ".0"
    return sign + time_str


class TokenKind(Enum):
    """Kinds of tokens in an ``=`` expression."""

    TYPE_TAG = "type_tag"
    MARKER_REF = "marker_ref"
    TIME = "time"
    PLUS = "+"
    MINUS = "-"


@dataclass
class Token:
    """A single token and its position in the expression text."""

    kind: TokenKind
    text: str
    position: int


class ExpressionError(Exception):
    """Raised internally when expression text can't be parsed."""

    pass


@dataclass
class MarkerReference:
    """Reference to the start or end of an existing marker.

    ``index`` is 1-based; negative values count from the last marker.
    ``implicit`` is set when neither ``S`` nor ``E`` was written. A start
    field then refers to the marker end, and an end field to the marker start.
    """

    type: Optional[MarkerType] = None
    index: int = 0
    start: bool = False
    implicit: bool = False

    def key(self) -> str:
        """Expression text for this reference."""
        type_key = next(k for k, v in TYPE_KEYS.items() if v == self.type)
        suffix = "" if self.implicit else ("S" if self.start else "E")
        return f"{type_key}{self.index}{suffix}"


@dataclass
class Literal:
    """A clock or millisecond value."""

    ms: int
    hms: bool


@dataclass
class MarkerRefNode:
    """A marker reference term."""

    ref: MarkerReference


@dataclass
class BinaryOffset:
    """``left + right`` or ``left - right``."""

    op: str
    left: "Node"
    right: "Node"


Node = Union[Literal, MarkerRefNode, BinaryOffset]


@dataclass
class Expression:
    """Root of a parsed ``=`` expression."""

    marker_type: Optional[MarkerType]
    body: Node


def tokenize(text: str) -> List[Token]:
    """Split the body of an ``=`` expression into tokens.

    Args:
        text: Expression text without the leading '=' and without whitespace

    Raises:
        ExpressionError: On characters that can't start any token
    """
    tokens = []
    i = 0
    while i < len(text):
        c = text[i]
        if c in TYPE_KEYS and text[i + 1:i + 2] == "@":
            tokens.append(Token(TokenKind.TYPE_TAG, c, i))
            i += 2
        elif c in TYPE_KEYS:
            match = _MARKER_REF_PATTERN.match(text, i)
            if not match:
                raise ExpressionError("Could not parse potential marker reference.")
            tokens.append(Token(TokenKind.MARKER_REF, match.group(0), i))
            i = match.end()
        elif c in _TIME_CHARS:
            start = i
            while i < len(text) and text[i] in _TIME_CHARS:
                i += 1
            tokens.append(Token(TokenKind.TIME, text[start:i], start))
        elif c == "+":
            tokens.append(Token(TokenKind.PLUS, c, i))
            i += 1
        elif c == "-":
            tokens.append(Token(TokenKind.MINUS, c, i))
            i += 1
        else:
            # Positions are reported relative to the full text, including '='
            raise ExpressionError(f"Unexpected character '{c}' at position {i + 1}.")
    return tokens


class _Parser:
    """Recursive-descent parser over a token list.

    Grammar::

        expression := [TYPE_TAG] sum
        sum        := signed (op term)*
        signed     := [op] term
        term       := MARKER_REF | TIME
    """

    def __init__(self, tokens: List[Token], is_end: bool):
        self.tokens = tokens
        self.pos = 0
        self.is_end = is_end
        self.has_reference = False

    def peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def parse(self) -> Expression:
        marker_type = self.parse_type_tag()
        if self.peek() is None:
            raise ExpressionError("Expression is empty.")
        body = self.parse_sum()
        return Expression(marker_type=marker_type, body=body)

    def parse_type_tag(self) -> Optional[MarkerType]:
        token = self.peek()
        if token is None or token.kind != TokenKind.TYPE_TAG:
            return None
        if self.is_end:
            raise ExpressionError("Marker type references are only allowed for start times.")
        self.advance()
        return TYPE_KEYS[token.text]

    def parse_sum(self) -> Node:
        node = self.parse_signed()
        while self.peek() is not None:
            op = self.parse_operator()
            node = BinaryOffset(op=op, left=node, right=self.parse_term(op))
        return node

    def parse_signed(self) -> Node:
        token = self.peek()
        if token.kind in (TokenKind.PLUS, TokenKind.MINUS):
            op = self.parse_operator()
            term = self.parse_term(op)
            if op == "-":
                return BinaryOffset(op="-", left=Literal(ms=0, hms=False), right=term)
            return term
        return self.parse_term("+")

    def parse_operator(self) -> str:
        token = self.advance()
        if token.kind not in (TokenKind.PLUS, TokenKind.MINUS):
            raise ExpressionError(
                f"Expected '+' or '-' before '{token.text}' at position {token.position + 1}."
            )
        following = self.peek()
        if following is not None and following.kind in (TokenKind.PLUS, TokenKind.MINUS):
            raise ExpressionError(
                f"Invalid operator sequence '{token.text}{following.text}'. "
                "Only a single operator is supported"
            )
        return token.text

    def parse_term(self, op: str) -> Node:
        token = self.peek()
        if token is None:
            raise ExpressionError("Expression cannot end with an operator.")
        self.advance()
        if token.kind == TokenKind.TYPE_TAG:
            if self.is_end:
                raise ExpressionError("Marker type references are only allowed for start times.")
            raise ExpressionError("Marker type references must be the first part of the expression.")
        if token.kind == TokenKind.MARKER_REF:
            return self.parse_marker_reference(token, op)
        if token.kind == TokenKind.TIME:
            ms = time_to_ms(token.text)
            if ms is None:
                raise ExpressionError(f'Could not parse "{token.text}" as a timestamp.')
            return Literal(ms=ms, hms=not _ONLY_DIGITS.match(token.text))
        raise ExpressionError(f"Unexpected '{token.text}' at position {token.position + 1}.")

    def parse_marker_reference(self, token: Token, op: str) -> MarkerRefNode:
        if self.has_reference:
            raise ExpressionError("Expressions can only reference a single marker.")
        if op == "-":
            raise ExpressionError("Marker references cannot be subtracted.")
        self.has_reference = True
        match = _MARKER_REF_PATTERN.fullmatch(token.text)
        se = match["se"]
        return MarkerRefNode(
            MarkerReference(
                type=TYPE_KEYS[match["type"]],
                index=int(match["index"]),
                start=se == "S" if se else self.is_end,
                implicit=se is None,
            )
        )


def parse_expression(text: str, is_end: bool = False) -> Expression:
    """Parse the body of an ``=`` expression into an AST.

    Raises:
        ExpressionError: If the text is not a valid expression
    """
    return _Parser(tokenize(text), is_end).parse()


def _collect(node: Node, sign: int, state: "ParseState") -> None:
    """Fold literal offsets into state.ms and pick up the marker reference."""
    if isinstance(node, Literal):
        state.ms += sign * node.ms
        state.hms = bool(state.hms) or node.hms
    elif isinstance(node, MarkerRefNode):
        state.marker_ref = node.ref
    else:
        _collect(node.left, sign, state)
        _collect(node.right, -sign if node.op == "-" else sign, state)


@dataclass
class ParseState:
    """Result of parsing a timestamp expression."""

    plain: bool = True
    valid: bool = True
    invalid_reason: Optional[str] = None
    hms: Optional[bool] = None
    ms: int = 0
    marker_type: Optional[MarkerType] = None
    marker_ref: Optional[MarkerReference] = None
    expression: Optional[Expression] = field(default=None, repr=False)

    def set_invalid(self, reason: str) -> "ParseState":
        self.valid = False
        self.invalid_reason = reason
        return self


class TimestampExpression:
    """A start or end timestamp field, parsed against an item's markers."""

    def __init__(
        self,
        markers: Optional[Sequence] = None,
        is_end: bool = False,
        plain_only: bool = False,
        allow_negative: bool = False,
    ):
        """Initialize the expression.

        Args:
            markers: Markers of the target item, used to resolve references.
                May be None until the target is known.
            is_end: Whether this expression is for an end timestamp
            plain_only: Reject ``=`` expressions
            allow_negative: Accept a leading '-' on plain timestamps, as
                shift fields do
        """
        self.is_end = is_end
        self.plain_only = plain_only
        self.allow_negative = allow_negative
        self._markers = sort_markers(markers) if markers is not None else None
        self._state = ParseState(hms=True)
        self._matched_marker = None

    @property
    def state(self) -> ParseState:
        """The current parse state."""
        return self._state

    def parse(self, text: str) -> ParseState:
        """Parse text, replacing the current state.

        Returns:
            A copy of the new state
        """
        text = text.replace(" ", "")
        self._matched_marker = None
        state = ParseState()
        self._state = state
        if not text:
            state.hms = True
            return copy.deepcopy(state)

        if text[0] != "=":
            ms = time_to_ms(text, allow_negative=self.allow_negative)
            if ms is None:
                state.set_invalid("Timestamp could not be parsed")
            else:
                state.ms = ms
            state.hms = not _ONLY_DIGITS.match(text)
            return copy.deepcopy(state)

        if self.plain_only:
            state.set_invalid("Only plain expressions are allowed, cannot use '=' syntax")
            return copy.deepcopy(state)

        state.plain = False
        try:
            expression = parse_expression(text[1:], self.is_end)
        except ExpressionError as e:
            logger.debug(f"Invalid timestamp expression '{text}': {e}")
            state.set_invalid(str(e))
            return copy.deepcopy(state)

        state.expression = expression
        state.marker_type = expression.marker_type
        _collect(expression.body, 1, state)
        if state.hms is None:
            state.hms = True
        self._validate_marker_reference()
        return copy.deepcopy(state)

    def update_state(self, state: ParseState) -> "TimestampExpression":
        """Adopt a state parsed elsewhere, e.g. one input applied to many items."""
        self._state = copy.deepcopy(state)
        self._matched_marker = None
        self._validate_marker_reference()
        return self

    def update_markers(self, markers: Optional[Sequence]) -> "TimestampExpression":
        """Set the markers references resolve against and revalidate."""
        self._markers = sort_markers(markers) if markers is not None else None
        self._matched_marker = None
        self._validate_marker_reference()
        return self

    def is_advanced(self) -> bool:
        """Whether the expression needs marker data to be evaluated."""
        return self._state.marker_ref is not None

    def ms(self, final: bool = False) -> Optional[int]:
        """Resolve the expression to milliseconds.

        Args:
            final: Whether this is the value being committed. A bare
                reference is then nudged 1ms away from the referenced marker,
                but never below 0.

        Returns:
            Milliseconds, or None if the expression is invalid or its marker
            reference can't be resolved yet
        """
        state = self._state
        if not state.valid:
            return None
        ref = state.marker_ref
        if ref is None:
            return state.ms
        if self._matched_marker is None:
            return None

        ms = state.ms + (self._matched_marker.start if ref.start else self._matched_marker.end)
        if not final or state.ms != 0:
            return ms
        if ref.start:
            return ms if ms == 0 else ms - 1
        return ms + 1

    def __str__(self) -> str:
        state = self._state
        if state.plain:
            return ms_to_hms(state.ms) if state.hms else str(state.ms)

        type_str = ""
        if state.marker_type is not None:
            type_str = next(k for k, v in TYPE_KEYS.items() if v == state.marker_type) + "@"
        ref = state.marker_ref
        marker_str = ref.key() if ref else ""

        time_str = ""
        if state.ms != 0 or ref is None:
            time_str = ms_to_hms(state.ms, minify=True) if state.hms else str(state.ms)

        op_str = "+" if marker_str and time_str and state.ms >= 0 else ""
        return f"={type_str}{marker_str}{op_str}{time_str}"

    def _validate_marker_reference(self) -> None:
        state = self._state
        if not state.valid or state.marker_ref is None or self._markers is None:
            return

        ref = state.marker_ref
        target = abs(ref.index)
        if target == 0:
            state.set_invalid("Marker index 0 is invalid, use 1-based indexing.")
            return

        candidates = [
            marker
            for marker in self._markers
            if ref.type is None or marker.marker_type == ref.type
        ]
        if ref.index < 0:
            candidates.reverse()
        if target > len(candidates):
            type_name = "" if ref.type is None else f"{ref.type.value} "
            state.set_invalid(
                f"Invalid marker index '{ref.index}': not enough {type_name}markers"
            )
            return
        self._matched_marker = candidates[target - 1]
