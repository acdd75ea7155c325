import re
from typing import Any, List

from taskpilot.automations.engine.context import Context

# {{ task.title }}, whitespace inside the braces is allowed
TOKEN_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class TemplateResolver:
    """
    Renders {{namespace.path}} placeholders against a Context.

    Unknown namespaces and missing values render as an empty string so raw
    placeholders never reach a channel. Previews pass keep_unresolved=True to
    leave those tokens in place.
    """

    def resolve(self, template: str, context: Context, keep_unresolved: bool = False) -> str:
        if not template or "{{" not in template:
            return template

        def replace(match: re.Match) -> str:
            value = context.lookup(match.group(1))
            if value is None and keep_unresolved:
                return match.group(0)
            return _stringify(value)

        return TOKEN_RE.sub(replace, template)

    def resolve_value(self, value: Any, context: Context, keep_unresolved: bool = False) -> Any:
        """Render every string inside nested dicts and lists."""
        if isinstance(value, str):
            return self.resolve(value, context, keep_unresolved)
        if isinstance(value, dict):
            return {k: self.resolve_value(v, context, keep_unresolved) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.resolve_value(v, context, keep_unresolved) for v in value]
        return value

    def find_unresolved(self, value: Any, context: Context) -> List[str]:
        """Tokens in value that would render as nothing."""
        missing: List[str] = []
        if isinstance(value, str):
            for match in TOKEN_RE.finditer(value):
                if context.lookup(match.group(1)) is None and match.group(0) not in missing:
                    missing.append(match.group(0))
        elif isinstance(value, dict):
            for v in value.values():
                missing.extend(t for t in self.find_unresolved(v, context) if t not in missing)
        elif isinstance(value, (list, tuple)):
            for v in value:
                missing.extend(t for t in self.find_unresolved(v, context) if t not in missing)
        return missing
