"""Template interpolation for action parameters and guard expressions.

Placeholders look like ``{{pageState.user.name}}``. The first path segment
selects a context area; unknown segments fall back to the context itself.
"""

import json
import re
from typing import Any, Dict, List, Mapping, MutableMapping, Sequence, Set

from ..exceptions import TemplateResolutionError


TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
SINGLE_TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

DEFAULT_MAX_DEPTH = 64

# First path segment -> ExecutionContext attribute
CONTEXT_ROOTS: Dict[str, str] = {
    "pageState": "page_state",
    "formData": "form_data",
    "widgetStates": "widget_states",
    "user": "user",
    "permissions": "permissions",
    "tenant": "tenant",
    "routeParams": "route_params",
    "queryParams": "query_params",
    "currentPath": "current_path",
    "trigger": "trigger",
}
CONTEXT_ROOTS.update({attr: attr for attr in list(CONTEXT_ROOTS.values())})


def get_nested_value(container: Any, path: str, default: Any = None) -> Any:
    """Get a nested value using dot notation.

    Walks mappings by key, lists and tuples by integer index, and other
    objects by public attribute.

    Args:
        container: Object to query
        path: Dot-separated path (e.g., "user.address.city")
        default: Value returned when any segment is missing

    Returns:
        Value at the path, the container itself for an empty path, or default
    """
    if not path or not isinstance(path, str):
        return container

    current = container
    try:
        for part in path.split("."):
            if current is None:
                return default
            if isinstance(current, Mapping):
                if part not in current:
                    return default
                current = current[part]
            elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
                try:
                    current = current[int(part)]
                except (ValueError, IndexError):
                    return default
            elif isinstance(current, (str, bytes, int, float, bool)):
                return default
            else:
                name = _attribute_name(current, part)
                if name is None:
                    return default
                current = getattr(current, name)
        return current
    except Exception:
        return default


def set_nested_value(
    container: MutableMapping[str, Any], path: str, value: Any, merge: bool = True
) -> None:
    """Set a nested value using dot notation, creating intermediate dicts.

    When ``merge`` is true and both the existing and the new value are
    mappings (not lists), the new keys are shallow-merged into a copy of the
    existing mapping. Lists are always replaced.
    """
    if not path or not isinstance(path, str):
        return

    parts = path.split(".")
    last = parts.pop()
    if not last:
        return

    current = container
    for part in parts:
        next_value = current.get(part)
        if not isinstance(next_value, MutableMapping):
            next_value = {}
            current[part] = next_value
        current = next_value

    existing = current.get(last)
    if merge and isinstance(value, Mapping) and isinstance(existing, Mapping):
        current[last] = {**existing, **value}
    else:
        current[last] = value


def resolve_context_path(path: str, context: Any) -> Any:
    """Resolve ``pageState.value``-style paths against an execution context."""
    root, _, rest = path.partition(".")

    attr = CONTEXT_ROOTS.get(root)
    if attr is not None:
        base = _context_field(context, root, attr)
        return get_nested_value(base, rest) if rest else base

    extra = _context_field(context, "extra", "extra")
    if isinstance(extra, Mapping) and root in extra:
        return get_nested_value(extra, path)

    return get_nested_value(context, path)


def _context_field(context: Any, key: str, attr: str) -> Any:
    if isinstance(context, Mapping):
        if key in context:
            return context[key]
        return context.get(attr)
    return getattr(context, attr, None)


def stringify(value: Any) -> str:
    """Render a resolved value inside a larger string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def resolve_template(template: Any, context: Any) -> Any:
    """Resolve a template string.

    A string that is exactly one ``{{...}}`` expression resolves to the
    native value (bool stays bool, dict stays dict). Mixed strings have each
    fragment stringified, missing values becoming an empty string.
    Non-strings and strings without placeholders are returned unchanged.
    """
    if not template or not isinstance(template, str):
        return template

    single = SINGLE_TEMPLATE_PATTERN.fullmatch(template)
    if single:
        return resolve_context_path(single.group(1).strip(), context)

    return TEMPLATE_PATTERN.sub(
        lambda match: stringify(resolve_context_path(match.group(1).strip(), context)),
        template,
    )


def resolve_templates_in_object(
    value: Any, context: Any, max_depth: int = DEFAULT_MAX_DEPTH
) -> Any:
    """Resolve every string leaf of a nested structure.

    Raises:
        TemplateResolutionError: On a reference cycle or nesting deeper than max_depth
    """
    return _resolve(value, context, max_depth, set(), [])


def _resolve(
    value: Any, context: Any, max_depth: int, active: Set[int], path: List[str]
) -> Any:
    if isinstance(value, str):
        return resolve_template(value, context)

    if not isinstance(value, (Mapping, list, tuple)):
        return value

    if len(path) >= max_depth:
        raise TemplateResolutionError(
            f"Template nesting exceeds maximum depth of {max_depth}", path=path
        )

    marker = id(value)
    if marker in active:
        raise TemplateResolutionError("Cyclic structure in template parameters", path=path)
    active.add(marker)
    try:
        if isinstance(value, Mapping):
            return {
                key: _resolve(item, context, max_depth, active, path + [str(key)])
                for key, item in value.items()
            }
        items = [
            _resolve(item, context, max_depth, active, path + [str(index)])
            for index, item in enumerate(value)
        ]
        return tuple(items) if isinstance(value, tuple) else items
    finally:
        active.discard(marker)


def evaluate_condition(expression: Any, context: Any) -> bool:
    """Evaluate a guard expression.

    An empty or missing expression is always true. Resolved booleans are
    returned as is, the strings "true"/"false" are parsed case-insensitively,
    and anything else uses ordinary truthiness.
    """
    if expression is None or expression == "":
        return True
    if isinstance(expression, bool):
        return expression
    if not isinstance(expression, str):
        return bool(expression)

    resolved = resolve_template(expression, context)

    if isinstance(resolved, bool):
        return resolved

    if isinstance(resolved, str):
        lowered = resolved.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False

    return bool(resolved)


def _attribute_name(obj: Any, part: str) -> Any:
    """Map a path segment onto a public attribute, accepting camelCase for snake_case."""
    if part.startswith("_"):
        return None
    if hasattr(obj, part):
        return part
    snake = CAMEL_BOUNDARY.sub("_", part).lower()
    if snake != part and hasattr(obj, snake):
        return snake
    return None
