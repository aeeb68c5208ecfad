"""Text formatting shared by the hand-written XML writers."""

from xml.sax.saxutils import escape


def _float_str(v, decimals=6):
    """Format a float, stripping trailing zeros after decimal point."""
    s = f"{v:.{decimals}f}"
    if '.' in s:
        s = s.rstrip('0').rstrip('.')
    if s == "-0":
        s = "0"
    return s


def _floats(values, decimals=6):
    return " ".join(_float_str(v, decimals) for v in values)


def _attr(value):
    """Escape a value for use inside a double-quoted XML attribute."""
    return escape(str(value), {'"': "&quot;"})
