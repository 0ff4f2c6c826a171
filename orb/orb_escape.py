"""
Escape-aware scanning of interpreter literal text.

Structural characters that live inside double-quoted strings must not be
mistaken for delimiters. `escape` marks them with a backslash, the splitter
and tokenizer then only honour unmarked delimiters, and `unescape` restores
the original characters once a string value has been isolated.
"""
from typing import Iterator, List, NamedTuple

from orb.orb_datatypes import ParseFailure

ESCAPE = "\\"
QUOTE = '"'
# Characters protected while inside a quoted string
PROTECTED = frozenset("()[]{},")
OPENERS = {"[": "]", "(": ")"}
CLOSERS = frozenset("])")


def escape(text: str) -> str:
    """Prefix every delimiter found inside a quoted string with an escape character."""
    out: List[str] = []
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string and ch == ESCAPE and i + 1 < n:
            # An existing escape pair is copied as one unit so `\"` never toggles.
            nxt = text[i + 1]
            out.append(ch)
            out.append(nxt)
            i += 2
            continue
        if ch == QUOTE:
            in_string = not in_string
        elif in_string and ch in PROTECTED:
            out.append(ESCAPE)
        out.append(ch)
        i += 1
    if in_string:
        raise ParseFailure("unterminated string literal", text)
    return "".join(out)


def unescape(text: str) -> str:
    """Drop the escape character in front of protected delimiters."""
    out: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == ESCAPE and i + 1 < n:
            nxt = text[i + 1]
            if nxt in PROTECTED:
                out.append(nxt)
            else:
                out.append(ch)
                out.append(nxt)
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def split_top(text: str, sep: str) -> List[str]:
    """Split escaped text on `sep` where it is neither escaped nor nested in brackets or braces."""
    parts: List[str] = []
    depth = 0
    start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == ESCAPE:
            i += 2
            continue
        if ch in "[({":
            depth += 1
        elif ch in "])}":
            depth -= 1
            if depth < 0:
                raise ParseFailure("unbalanced closing bracket", text)
        elif depth == 0 and text.startswith(sep, i):
            parts.append(text[start:i])
            i += len(sep)
            start = i
            continue
        i += 1
    if depth != 0:
        raise ParseFailure("unbalanced brackets", text)
    parts.append(text[start:])
    return parts


class Token(NamedTuple):
    kind: str   # 'open' | 'close' | 'comma' | 'atom' | 'mapping'
    text: str


def tokenize(escaped: str) -> Iterator[Token]:
    """
    Split escaped literal text into structural tokens.

    Atoms are the text between delimiters with surrounding whitespace removed;
    escaped delimiters stay inside the atom. A `$` item marker right before
    an opening bracket is dropped. Brace-delimited mappings are returned whole.
    """
    buf: List[str] = []
    i = 0
    n = len(escaped)

    def flush():
        atom = "".join(buf).strip()
        buf.clear()
        return atom

    while i < n:
        ch = escaped[i]
        if ch == ESCAPE and i + 1 < n:
            buf.append(escaped[i:i + 2])
            i += 2
            continue
        if ch in OPENERS:
            atom = flush()
            if atom and atom != "$":
                raise ParseFailure(f"unexpected text before {ch!r}: {atom!r}", escaped)
            yield Token('open', ch)
        elif ch in CLOSERS or ch == ",":
            atom = flush()
            if atom:
                yield Token('atom', atom)
            yield Token('close' if ch in CLOSERS else 'comma', ch)
        elif ch == "{":
            if flush():
                raise ParseFailure("unexpected text before '{'", escaped)
            end = _matching_brace(escaped, i)
            yield Token('mapping', escaped[i:end + 1])
            i = end + 1
            continue
        else:
            buf.append(ch)
        i += 1
    atom = flush()
    if atom:
        yield Token('atom', atom)


def _matching_brace(text: str, start: int) -> int:
    depth = 0
    i = start
    while i < len(text):
        ch = text[i]
        if ch == ESCAPE:
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    raise ParseFailure("unbalanced braces", text)
