"""Typed access to request parameters."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional

from markereditor.errors import QueryParameterError

_MISSING = object()


class QueryParser:
    """Read required and optional parameters from a request.

    Every accessor raises QueryParameterError (HTTP 400) when a required
    parameter is missing or can't be converted.
    """

    def __init__(self, params: Mapping[str, Any]):
        self.params = dict(params)

    def __contains__(self, key: str) -> bool:
        return key in self.params

    def raw(self, key: str, default: Any = _MISSING) -> Any:
        """Get a parameter's value without conversion."""
        if key not in self.params:
            if default is not _MISSING:
                return default
            raise QueryParameterError(f"Parameter '{key}' not found.")
        return self.params[key]

    def i(self, key: str, default: Any = _MISSING) -> int:
        """Get a parameter as an integer."""
        if key not in self.params and default is not _MISSING:
            return default
        value = self.raw(key)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise QueryParameterError(
                f"Expected integer parameter for {key}, found {value}"
            ) from e

    def ints(self, *keys: str) -> List[int]:
        """Get several integer parameters at once."""
        return [self.i(key) for key in keys]

    def ia(self, key: str, default: Optional[List[int]] = None) -> List[int]:
        """Get a comma separated list of integers.

        An empty value is an empty list. If ``default`` is given, a missing
        parameter returns it instead of raising.
        """
        if default is not None and key not in self.params:
            return default
        value = str(self.raw(key)).strip()
        if not value:
            return []
        try:
            return [int(part) for part in value.split(",")]
        except ValueError as e:
            raise QueryParameterError(f"Invalid value provided for {key}") from e

    def b(self, key: str, default: Any = _MISSING) -> bool:
        """Get a boolean parameter (1/0, true/false, yes/no)."""
        value = self.raw(key, default)
        if isinstance(value, bool):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("1", "true", "yes", "on"):
            return True
        if normalized in ("0", "false", "no", "off", ""):
            return False
        raise QueryParameterError(f"Expected boolean parameter for {key}, found {value}")
