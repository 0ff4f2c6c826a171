"""
Decodes an interpreter's textual self-representation into ResultValue trees.

Classification happens once, on the leading characters of the text:

    $[ ... ]  or  $( ... )   sequence, or table when rows are uniform
    { k => v, ... }          mapping
    anything else            scalar

Sequences are read by recursive descent over the escape-aware token stream
from orb_escape. Malformed text never yields a half-built tree: the raw text
comes back as a string scalar instead.
"""
import logging
import re
import unicodedata
from typing import List, Optional

from orb.orb_datatypes import (
    Scalar, Sequence, Table, Mapping, HLINE, ParseFailure, ResultValue
)
from orb.orb_escape import escape, unescape, split_top, tokenize, Token, OPENERS

logger = logging.getLogger("orb.parser")

NUMBER_RE = re.compile(r'^[+-]?(?:\d[\d_]*(?:\.\d[\d_]*)?|\.\d[\d_]*)(?:[eE][+-]?\d+)?$')
BOOLEAN_TOKENS = frozenset(('True', 'False', 'Bool::True', 'Bool::False', 'true', 'false'))
HLINE_TOKEN = "HLINE"
MAPPING_SEPARATOR = " => "

_STRING_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '0': '\0', 'e': '\x1b'}


def classify(text: str) -> str:
    """Returns 'sequence', 'mapping' or 'scalar' for stripped literal text."""
    if text.startswith("$[") or text.startswith("$("):
        return 'sequence'
    if text.startswith("{"):
        return 'mapping'
    return 'scalar'


def parse_result(raw: str) -> ResultValue:
    """Parse raw interpreter output; falls back to a string scalar on malformed input."""
    text = (raw or "").strip()
    try:
        return _parse_escaped(escape(text))
    except ParseFailure as e:
        logger.debug("unparseable result literal (%s); passing through as text", e)
        return Scalar(text, 'string')


def _parse_escaped(escaped: str) -> ResultValue:
    match classify(escaped):
        case 'sequence':
            return _parse_sequence(escaped)
        case 'mapping':
            return _parse_mapping(escaped)
        case _:
            return parse_scalar(unescape(escaped))


# --------------------------
# Scalars
# --------------------------

def parse_scalar(text: str) -> ResultValue:
    """Infer the kind of a single literal; a bare HLINE becomes the row separator."""
    s = text.strip()
    if s == HLINE_TOKEN:
        return HLINE
    if NUMBER_RE.match(s):
        return Scalar(s, 'number')
    if s in BOOLEAN_TOKENS:
        return Scalar(s, 'boolean')
    if len(s) >= 2 and s[0] == '"' and s[-1] == '"':
        return Scalar(unquote(s[1:-1]), 'string')
    return Scalar(s, 'string')


def unquote(body: str) -> str:
    """Resolve backslash escapes in the body of a double-quoted literal."""
    out: List[str] = []
    i = 0
    n = len(body)
    while i < n:
        ch = body[i]
        if ch == "\\" and i + 1 < n:
            nxt = body[i + 1]
            if nxt in "xc" and body.startswith("[", i + 2):
                close = body.find("]", i + 3)
                decoded = _codepoints(nxt, body[i + 3:close]) if close != -1 else None
                if decoded is None:
                    # Not understood: keep it as written
                    out.append(body[i:i + 2])
                    i += 2
                else:
                    out.append(decoded)
                    i = close + 1
                continue
            out.append(_STRING_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _codepoints(kind: str, inner: str) -> Optional[str]:
    """
    Decode the inside of \\x[..] (hex) or \\c[..] (decimal or Unicode names).
    Both take comma-separated lists. Returns None for anything else.
    """
    chars: List[str] = []
    for part in inner.split(","):
        part = part.strip()
        try:
            if kind == 'x':
                chars.append(chr(int(part, 16)))
            elif part.isdigit():
                chars.append(chr(int(part)))
            else:
                chars.append(unicodedata.lookup(part))
        except (ValueError, KeyError, OverflowError):
            return None
    return "".join(chars)


# --------------------------
# Sequences and tables
# --------------------------

class _SequenceReader:
    """Recursive descent over a token list."""

    def __init__(self, tokens: List[Token], source: str):
        self.tokens = tokens
        self.pos = 0
        self.source = source

    def _next(self) -> Token:
        if self.pos >= len(self.tokens):
            raise ParseFailure("unexpected end of literal", self.source)
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def read_element(self) -> ResultValue:
        tok = self._next()
        match tok.kind:
            case 'open':
                return Sequence(self.read_items(OPENERS[tok.text]))
            case 'atom':
                return parse_scalar(unescape(tok.text))
            case 'mapping':
                return _parse_mapping(tok.text)
            case _:
                raise ParseFailure(f"unexpected {tok.text!r}", self.source)

    def read_items(self, closer: str) -> List[ResultValue]:
        items: List[ResultValue] = []
        nxt = self._peek()
        if nxt is not None and nxt.kind == 'close':
            self._expect_close(closer)
            return items
        while True:
            items.append(self.read_element())
            tok = self._next()
            if tok.kind == 'comma':
                # A trailing comma is how one-element lists print: (1,)
                nxt = self._peek()
                if nxt is not None and nxt.kind == 'close':
                    self._expect_close(closer)
                    return items
                continue
            if tok.kind == 'close' and tok.text == closer:
                return items
            raise ParseFailure(f"expected ',' or {closer!r}, got {tok.text!r}", self.source)

    def _expect_close(self, closer: str):
        tok = self._next()
        if tok.kind != 'close' or tok.text != closer:
            raise ParseFailure(f"mismatched {tok.text!r}, expected {closer!r}", self.source)


def _parse_sequence(escaped: str) -> ResultValue:
    reader = _SequenceReader(list(tokenize(escaped)), escaped)
    top = reader.read_element()
    if not reader.at_end():
        raise ParseFailure("trailing text after sequence literal", escaped)
    return _as_table(top)


def _as_table(seq: Sequence) -> ResultValue:
    """Promote a sequence of equal-length sequences (plus HLINE rows) to a Table."""
    rows = [item for item in seq.items if item is not HLINE]
    if not rows or not all(isinstance(r, Sequence) for r in rows):
        return seq
    if len({len(r) for r in rows}) != 1:
        return seq
    return Table([item if item is HLINE else list(item.items) for item in seq.items])


# --------------------------
# Mappings
# --------------------------

def _parse_mapping(escaped: str) -> Mapping:
    if not escaped.endswith("}"):
        raise ParseFailure("mapping literal is not closed", escaped)
    inner = escaped[1:-1].strip()
    if not inner:
        return Mapping([])
    pairs = []
    for entry in split_top(inner, ", "):
        key, sep, value = entry.partition(MAPPING_SEPARATOR)
        if not sep:
            raise ParseFailure(f"mapping entry without {MAPPING_SEPARATOR.strip()!r}: {entry!r}", escaped)
        pairs.append((parse_scalar(unescape(key)), _parse_escaped(value.strip())))
    return Mapping(pairs)


__all__ = [
    "classify",
    "parse_result",
    "parse_scalar",
    "unquote",
]
