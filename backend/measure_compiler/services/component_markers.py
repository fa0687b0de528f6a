"""Component marker comments embedded in generated code.

Each data element's generated code is tagged with its component id so
manual overrides can be re-anchored on regeneration without searching
by description.
"""

import re

# Both block comment delimiters contain "*"; escaping "%" as well keeps the
# encoding reversible so distinct ids never share a marker.
_MARKER_ESCAPES = {"%": "%25", "*": "%2A", "]": "%5D", "\r": "%0D", "\n": "%0A"}
_UNSAFE_MARKER_CHARS = re.compile(r"[%*\]\r\n]")


def marker_id(component_id: str) -> str:
    """Component id percent-escaped for embedding inside a comment."""
    return _UNSAFE_MARKER_CHARS.sub(lambda match: _MARKER_ESCAPES[match.group()], component_id)


def cql_open_marker(component_id: str) -> str:
    return f"/* [component:{marker_id(component_id)}] */"


def cql_close_marker(component_id: str) -> str:
    return f"/* [/component:{marker_id(component_id)}] */"


def wrap_cql_component(component_id: str, expression: str) -> str:
    """Wrap a CQL expression in open/close component markers."""
    return f"{cql_open_marker(component_id)} {expression} {cql_close_marker(component_id)}"


def sql_marker_line(component_id: str, description: str | None = None) -> str:
    """SQL line comment preceding the CTE generated for a component."""
    suffix = f" {description}" if description else ""
    return f"-- [component:{marker_id(component_id)}]{suffix}"


def sql_marker_prefix(component_id: str) -> str:
    return f"-- [component:{marker_id(component_id)}]"
