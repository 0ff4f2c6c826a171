"""
Defines the result value types and error kinds for the orb evaluation bridge.

An interpreter hands back its own textual self-representation of a value;
the parser turns that text into one of the tagged variants below so the
authoring tool can render scalars, lists, tables and mappings.
"""

from dataclasses import dataclass, field
from typing import List, Tuple, Union, Literal, Optional
import collections.abc

# =================================================================
# Error kinds
# =================================================================

class OrbError(Exception):
    """Base class for all errors raised by orb."""
    pass


class ProcessSpawnFailure(OrbError):
    """The interpreter could not be started or exited with a non-zero status."""
    def __init__(self, command, returncode: Optional[int] = None, stderr: str = ""):
        self.command = list(command) if command else []
        self.returncode = returncode
        self.stderr = stderr or ""
        super().__init__(self._message())

    def _message(self) -> str:
        # The interpreter's own diagnostic wins over anything we could say.
        if self.stderr.strip():
            return self.stderr
        name = self.command[0] if self.command else "<interpreter>"
        if self.returncode is None:
            return f"{name}: command not found"
        return f"{name} exited with status {self.returncode}"


class EvaluationTimeout(OrbError, TimeoutError):
    """An evaluation ran past its time bound."""
    def __init__(self, message: str, timeout: float):
        self.timeout = timeout
        super().__init__(message)


class SentinelTimeout(EvaluationTimeout):
    """The end-of-evaluation marker never showed up in a session's output."""
    def __init__(self, session: str, timeout: float):
        self.session = session
        super().__init__(f"session {session} did not finish within {timeout}s", timeout)


class ParseFailure(OrbError, ValueError):
    """Malformed literal text. Recovered inside the parser."""
    def __init__(self, message: str, text: str = ""):
        super().__init__(message)
        self.text = text


# =================================================================
# Result values
# =================================================================

ScalarKind = Literal['string', 'number', 'boolean']


class _HlineMarker:
    """Internal helper class for the table row separator singleton."""
    def __repr__(self):
        return "HLINE"

# Singleton row separator for tables
HLINE = _HlineMarker()


@dataclass(frozen=True)
class Scalar:
    """A single literal: its source text plus the kind inferred from it."""
    text: str
    kind: ScalarKind = 'string'

    @property
    def value(self) -> Union[str, int, float, bool]:
        """The scalar converted to the matching Python type."""
        if self.kind == 'boolean':
            return self.text in ('True', 'true', 'Bool::True')
        if self.kind == 'number':
            cleaned = self.text.replace('_', '')
            try:
                return int(cleaned)
            except ValueError:
                return float(cleaned)
        return self.text


@dataclass
class Sequence:
    items: List['ResultValue'] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index):
        return self.items[index]


@dataclass
class Table:
    """Rows of cells; a row may be the HLINE separator instead of data."""
    rows: List[Union[List['ResultValue'], _HlineMarker]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index):
        return self.rows[index]

    @property
    def width(self) -> int:
        widths = {len(r) for r in self.rows if r is not HLINE}
        return widths.pop() if len(widths) == 1 else 0


@dataclass
class Mapping:
    """Ordered key/value pairs. Keys are usually, not necessarily, unique."""
    pairs: List[Tuple['ResultValue', 'ResultValue']] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.pairs)

    def keys(self):
        return [k for k, _ in self.pairs]

    def get(self, key, default=None):
        for k, v in self.pairs:
            if k == key or (isinstance(k, Scalar) and k.value == key):
                return v
        return default


ResultValue = Union[Scalar, Sequence, Table, Mapping, _HlineMarker]


def to_python(value):
    """Convert a ResultValue tree into plain Python containers and scalars."""
    if value is HLINE:
        return HLINE
    if isinstance(value, Scalar):
        return value.value
    if isinstance(value, Sequence):
        return [to_python(v) for v in value.items]
    if isinstance(value, Table):
        return [r if r is HLINE else [to_python(c) for c in r] for r in value.rows]
    if isinstance(value, Mapping):
        out = {}
        for k, v in value.pairs:
            key = to_python(k)
            # Lists are unhashable; fall back to their text form as a key
            if not isinstance(key, collections.abc.Hashable):
                key = str(key)
            out[key] = to_python(v)
        return out
    return value
