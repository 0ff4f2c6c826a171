"""
A printer that writes ResultValue trees back out as interpreter literal text.
"""
import re

from orb.orb_datatypes import Scalar, Sequence, Table, Mapping, HLINE

_BARE_KEY_RE = re.compile(r'^[A-Za-z_][\w\-]*$')


class Printer:
    """Formats ResultValue trees into text that orb_parser reads back."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format a value."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        if obj is HLINE: return self._pformat_hline
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        # Plain Python values are printed as the scalars they would parse to
        return self._pformat_python

    def _create_handlers(self):
        return {
            Scalar: self._pformat_scalar,
            Sequence: self._pformat_sequence,
            Table: self._pformat_table,
            Mapping: self._pformat_mapping,
        }

    def _pformat_hline(self, obj, level):
        return "HLINE"

    def _pformat_scalar(self, obj, level):
        if obj.kind == 'string':
            return self._quote(obj.text)
        return obj.text

    def _pformat_sequence(self, obj, level):
        inner = ", ".join(self.pformat(item, level + 1) for item in obj.items)
        # Only the outermost literal carries the `$` item marker
        return f"$[{inner}]" if level == 0 else f"[{inner}]"

    def _pformat_table(self, obj, level):
        rows = []
        for row in obj.rows:
            if row is HLINE:
                rows.append("HLINE")
            else:
                rows.append("[" + ", ".join(self.pformat(c, level + 2) for c in row) + "]")
        inner = ", ".join(rows)
        return f"$[{inner}]" if level == 0 else f"[{inner}]"

    def _pformat_mapping(self, obj, level):
        entries = []
        for key, value in obj.pairs:
            # Values restart at level 0: each one is read back as a whole literal
            entries.append(f"{self._format_key(key)} => {self.pformat(value, 0)}")
        return "{" + ", ".join(entries) + "}"

    def _format_key(self, key):
        if isinstance(key, Scalar) and key.kind == 'string':
            text = key.text
            if _BARE_KEY_RE.match(text) and text not in ("True", "False", "true", "false", "HLINE"):
                return text
        return self.pformat(key, 1)

    def _pformat_python(self, obj, level):
        if isinstance(obj, bool):
            return 'True' if obj else 'False'
        if isinstance(obj, (int, float)):
            return str(obj)
        if isinstance(obj, (list, tuple)):
            return self._pformat_sequence(Sequence(list(obj)), level)
        if isinstance(obj, dict):
            return self._pformat_mapping(Mapping(list(obj.items())), level)
        return self._quote(str(obj))

    def _quote(self, text):
        escaped = (text.replace("\\", "\\\\")
                       .replace('"', '\\"')
                       .replace("\n", "\\n")
                       .replace("\t", "\\t"))
        return f'"{escaped}"'


def format_result(value) -> str:
    """Format a ResultValue (or plain Python value) as literal text."""
    return Printer().pformat(value)
