"""Mustache-style placeholder rendering for reactor parameters.

Supports ``{{a.b}}``, ``{{{a.b}}}`` and ``{{& a.b}}``. None of them escape
their output: values are filesystem paths and SQL literals, and HTML escaping
would corrupt characters such as ``&`` in a filename. Callers building shell
commands pass ``quote`` so that only the substituted values are quoted and
the surrounding template text (``~``, ``$VAR``) still reaches the shell as
written.
"""

import re
from collections.abc import Mapping

_PLACEHOLDER = re.compile(
    r"\{\{\{\s*([\w.]+)\s*\}\}\}"      # {{{name}}}
    r"|\{\{\s*&?\s*([\w.]+)\s*\}\}"    # {{name}} / {{& name}}
)


def resolve(scope, dotted: str):
    """Walk a dotted name through nested mappings/attributes. Missing -> None."""
    value = scope
    for part in dotted.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def render(template: str, scope, quote=None) -> str:
    """Render *template* against *scope*; unknown names render as ''.

    ``quote``, when given, is applied to each substituted value.
    """
    if not template:
        return ""

    def _sub(match):
        value = resolve(scope, match.group(1) or match.group(2))
        if value is None:
            return ""
        return quote(str(value)) if quote else str(value)

    return _PLACEHOLDER.sub(_sub, template)
