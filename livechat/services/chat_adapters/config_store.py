"""Per-adapter configuration store."""

from typing import Any, Dict, Iterable, List, Mapping, Optional

from .exceptions import ConfigError


def is_blank(value: Any) -> bool:
    """Return True for values that count as "not set"."""
    return value is None or value == ""


class AdapterConfig:
    """Key/value configuration owned by a single adapter instance.

    ``get()`` treats an empty string exactly like a missing key, so a caller
    clearing a value with ``set("channel", "")`` gets the default back.
    """

    def __init__(
        self,
        required: Iterable[str] = (),
        defaults: Optional[Mapping[str, Any]] = None,
    ):
        self.required = tuple(required)
        self._values: Dict[str, Any] = {}
        if defaults:
            self.set(dict(defaults))

    def get(self, key: str, default: Any = None) -> Any:
        value = self._values.get(key)
        if is_blank(value):
            return default
        return value

    def set(self, key, value: Any = None) -> "AdapterConfig":
        """Set one key, or every entry of a mapping."""
        if isinstance(key, Mapping):
            for k, v in key.items():
                self.set(k, v)
        else:
            self._values[key] = value
        return self

    def has(self, key: str) -> bool:
        return not is_blank(self._values.get(key))

    def missing(self) -> List[str]:
        return [key for key in self.required if not self.has(key)]

    def validate(self) -> None:
        """Raise ConfigError if a required key is absent or empty."""
        missing = self.missing()
        if missing:
            raise ConfigError(f"Missing required config: {', '.join(missing)}")

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __repr__(self) -> str:
        return f"AdapterConfig(keys={sorted(self._values)}, required={list(self.required)})"
