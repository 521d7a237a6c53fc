"""
Text rendering of value trees.

Both renderers sort map keys so output is stable for display; the
decoded Map itself keeps the order of the data section.
"""

import json
import math

from .value import (
    Value, Null, Bool, Int32, UInt16, UInt32, UInt64, Double, String, Array, Map,
)


def to_json(value: Value, pretty: bool = True, sort_keys: bool = False) -> str:
    """
    Render a value tree as JSON.

    Args:
        value: Value to render
        pretty: Indent with two spaces instead of a single line
        sort_keys: Sort map keys

    Returns:
        JSON text

    Raises:
        ValueError: A NaN or infinite Double has no JSON form
    """
    return json.dumps(
        value.to_python(),
        allow_nan=False,
        indent=2 if pretty else None,
        separators=None if pretty else (",", ":"),
        sort_keys=sort_keys,
        ensure_ascii=False,
    )


def _format_double(number: float) -> str:
    if math.isnan(number) or math.isinf(number):
        return str(number)
    if number.is_integer() and abs(number) < 1e16:
        return str(int(number))
    return repr(number)


def pretty_print(value: Value, indent: str = "") -> str:
    """
    Render a value tree as indented, human readable text.

    Maps print as {"key": value, ...} with keys sorted, arrays as
    [item, ...], one element per line. Empty composites print as {} and [].

    Args:
        value: Value to render
        indent: Prefix for nested lines

    Returns:
        Formatted text
    """
    if isinstance(value, Map):
        if len(value) == 0:
            return "{}"
        lines = ["{"]
        items = sorted(value.items())
        for i, (key, child) in enumerate(items):
            comma = "," if i < len(items) - 1 else ""
            rendered = pretty_print(child, indent + "  ")
            lines.append(f"{indent}  {json.dumps(key, ensure_ascii=False)}: {rendered}{comma}")
        lines.append(f"{indent}}}")
        return "\n".join(lines)

    if isinstance(value, Array):
        if len(value) == 0:
            return "[]"
        lines = ["["]
        for i, child in enumerate(value.items):
            comma = "," if i < len(value) - 1 else ""
            lines.append(f"{indent}  {pretty_print(child, indent + '  ')}{comma}")
        lines.append(f"{indent}]")
        return "\n".join(lines)

    if isinstance(value, String):
        return json.dumps(value.value, ensure_ascii=False)
    if isinstance(value, Bool):
        return "true" if value.value else "false"
    if isinstance(value, (Int32, UInt16, UInt32, UInt64)):
        return str(value.value)
    if isinstance(value, Double):
        return _format_double(value.value)
    if isinstance(value, Null):
        return "null"
    raise TypeError(f"Unsupported value type {type(value).__name__}")
