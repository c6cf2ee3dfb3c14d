"""Variable substitution for profile files.

``${NAME}`` is replaced by the variable value; ``${NAME|default}`` falls back
to ``default`` when the variable is not defined. Unresolved references are
left in place and reported with a warning.
"""

import re
from typing import Any, Dict

from bulkflow.logging import get_logger

logger = get_logger(__name__)

VARIABLE_PATTERN = re.compile(r"\$\{\s*([A-Za-z_][A-Za-z0-9_.]*)\s*(?:\|([^}]*))?\}")


def substitute_variables(data: Any, variables: Dict[str, Any]) -> Any:
    """Recursively substitute variables in strings, lists and dicts.

    Args:
        data: Data to substitute variables in
        variables: Variables dictionary

    Returns:
        Data with variables substituted
    """
    if isinstance(data, dict):
        return {key: substitute_variables(value, variables) for key, value in data.items()}
    if isinstance(data, list):
        return [substitute_variables(item, variables) for item in data]
    if isinstance(data, str):
        return _substitute_string(data, variables)
    return data


def _substitute_string(text: str, variables: Dict[str, Any]) -> Any:
    # A value that is exactly one reference keeps the variable's type
    whole = VARIABLE_PATTERN.fullmatch(text)
    if whole:
        name, default = whole.group(1), whole.group(2)
        if name in variables:
            return variables[name]
        if default is not None:
            return _strip_quotes(default)
        logger.warning(f"Variable '{name}' is not defined")
        return text

    def replace(match: "re.Match") -> str:
        name, default = match.group(1), match.group(2)
        if name in variables:
            return str(variables[name])
        if default is not None:
            return _strip_quotes(default)
        logger.warning(f"Variable '{name}' is not defined")
        return match.group(0)

    return VARIABLE_PATTERN.sub(replace, text)


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value
