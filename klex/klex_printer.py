"""
Text forms of Klex runtime values.
"""
import math

from klex.klex_datatypes import KlexFunction, NativeFunction


def format_number(value) -> str:
    """Integral floats drop their fractional part: 3.0 -> '3'."""
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return str(value)


class Printer:
    """Formats Klex values for display and for string concatenation."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def to_text(self, obj) -> str:
        """The textual form used by '+' concatenation and `print`."""
        if isinstance(obj, str):
            return obj
        return self.pformat(obj)

    def pformat(self, obj) -> str:
        """Formats a value as it would be written in Klex source, where possible."""
        handler = self._handlers.get(type(obj))
        if handler is None:
            if isinstance(obj, KlexFunction):
                handler = self._pformat_function
            elif isinstance(obj, NativeFunction):
                handler = self._pformat_native
            else:
                return repr(obj)
        return handler(obj)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: format_number,
            float: format_number,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            KlexFunction: self._pformat_function,
        }

    def _pformat_str(self, obj):
        escaped = obj.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'

    def _pformat_bool(self, obj):
        return 'true' if obj else 'false'

    def _pformat_none(self, obj):
        return 'null'

    def _pformat_function(self, obj):
        return f"<function({', '.join(obj.params)})>"

    def _pformat_native(self, obj):
        return f"<native {obj.name}>"


_printer = Printer()


def to_text(value) -> str:
    return _printer.to_text(value)
