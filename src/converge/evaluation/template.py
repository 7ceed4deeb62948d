"""Pure template rendering for file payloads (startup scripts, configs)."""

import re
from typing import Any, Mapping
from ..utils.errors import TemplateRenderError

# $${ is an escape for a literal ${
_PLACEHOLDER = re.compile(r"\$\$\{|\$\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}")


def render(template: str, variables: Mapping[str, Any]) -> bytes:
    """
    Render ``template`` by substituting ``${name}`` placeholders.

    Args:
        template: Template body
        variables: Variable name -> resolved value

    Returns:
        Rendered UTF-8 bytes

    Raises:
        TemplateRenderError: If a placeholder names an undefined variable
    """
    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name is None:
            return "${"
        if name not in variables:
            defined = ", ".join(sorted(variables)) or "none"
            raise TemplateRenderError(
                f"Template references undefined variable '{name}' (defined: {defined})"
            )
        return to_text(variables[name])

    return _PLACEHOLDER.sub(substitute, template).encode("utf-8")


def to_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)
