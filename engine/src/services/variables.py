"""
Variable substitution for command templates.

Supports ``${name}`` and ``${name:default}`` tokens. Lookup precedence is
secrets > pipeline variables > project variables. Unknown tokens without a
default are left in place; call ``validate`` (or pass ``strict=True``) when
every token must resolve.
"""

import logging
import re
from typing import Any, Dict, List, Set

from pydantic import BaseModel

from engine.src.errors import ResolutionError

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")

# Characters with special meaning to a POSIX shell
SHELL_METACHARACTERS = re.compile(r"[;&|`$(){}\[\]<>]")

class VariableScopes(BaseModel):
    project: Dict[str, Any] = {}
    pipeline: Dict[str, Any] = {}
    secrets: Dict[str, Any] = {}

    def merged(self) -> Dict[str, str]:
        """Flatten the scopes, later layers winning."""
        values: Dict[str, str] = {}
        for layer in (self.project, self.pipeline, self.secrets):
            for name, value in layer.items():
                values[name] = stringify(value)
        return values

class VariableValidation(BaseModel):
    valid: bool
    missing: List[str] = []

def stringify(value: Any) -> str:
    """Render a variable value the way it appears on a command line."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)

def resolve(template: str, scopes: VariableScopes, strict: bool = False) -> str:
    """Substitute variables in a command template."""
    if strict:
        result = validate(template, scopes)
        if not result.valid:
            raise ResolutionError(
                f"Unresolved variables: {', '.join(result.missing)}",
                missing=result.missing,
            )

    values = scopes.merged()

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1).strip()
        if name in values:
            return values[name]
        default = match.group(2)
        if default is not None:
            return default.strip()
        logger.warning(f"Variable '{name}' not found and no default provided")
        return match.group(0)

    return VARIABLE_PATTERN.sub(_replace, template)

def extract_variables(template: str) -> Set[str]:
    """Return every distinct variable name referenced by a template."""
    return {match.group(1).strip() for match in VARIABLE_PATTERN.finditer(template)}

def validate(template: str, scopes: VariableScopes) -> VariableValidation:
    """
    Check that every token can be resolved.
    A name is missing only if no scope defines it and one of its
    occurrences has no inline default.
    """
    values = scopes.merged()
    missing: List[str] = []

    for match in VARIABLE_PATTERN.finditer(template):
        name = match.group(1).strip()
        has_default = match.group(2) is not None
        if not has_default and name not in values and name not in missing:
            missing.append(name)

    return VariableValidation(valid=not missing, missing=missing)

def sanitize(value: str) -> str:
    """Strip shell metacharacters and newlines from untrusted input."""
    value = SHELL_METACHARACTERS.sub("", value)
    return value.replace("\n", " ").replace("\r", "").strip()

def escape_for_shell(value: str) -> str:
    """Quote a value for literal use in a POSIX shell command."""
    return "'" + value.replace("'", "'\\''") + "'"
