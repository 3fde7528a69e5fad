"""Variable interpolation for request templates.

Tokens have the form ``{{name}}``; surrounding whitespace inside the braces is
ignored. A token whose name is not in the variable mapping is left in the
output exactly as written, so a request can always be sent even when no
environment is active. Substituted values are never re-scanned.
"""

import re
from typing import List, Mapping, Optional

TOKEN_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)


def interpolate(template: str, variables: Optional[Mapping[str, str]]) -> str:
    """Resolve ``{{name}}`` tokens in ``template`` against ``variables``."""
    if not template or "{{" not in template:
        return template
    variables = variables or {}

    def _substitute(match: re.Match) -> str:
        name = match.group(1).strip()
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return TOKEN_PATTERN.sub(_substitute, template)


def template_variables(template: str) -> List[str]:
    """Names referenced by ``template`` in order of first appearance."""
    names: List[str] = []
    for match in TOKEN_PATTERN.finditer(template or ""):
        name = match.group(1).strip()
        if name not in names:
            names.append(name)
    return names


def unresolved_variables(template: str, variables: Optional[Mapping[str, str]]) -> List[str]:
    variables = variables or {}
    return [name for name in template_variables(template) if name not in variables]

