"""Typed attribute declarations and the per-instance store holding their values.

Coercion is delegated to pydantic: each typed attribute owns a ``TypeAdapter``
validating in lax mode, so ``"5"`` becomes ``5`` for an ``int`` attribute and
ISO strings become ``datetime`` objects. Failures raise pydantic's
``ValidationError`` unchanged.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from pydantic import TypeAdapter

from fasten.domain import evaluate
from fasten.errors import UnknownAttributeError

__all__ = ["AttributeSpec", "AttributeStore"]


@dataclass(frozen=True)
class AttributeSpec:
    """Declaration of one typed host attribute.

    Attributes:
        name: Attribute name.
        type: Any type pydantic can validate, or None for an untyped attribute.
        default: A value or a thunk producing one.
        required: Whether a blank value fails ``Host.is_valid``.
        writer: Optional ``(host, value) -> value`` run before coercion on every write.
    """

    name: str
    type: Any = None
    default: Any = None
    required: bool = False
    writer: Optional[Callable[[Any, Any], Any]] = None
    _adapter: Optional[TypeAdapter] = field(init=False, repr=False, compare=False, default=None)

    def __post_init__(self):
        if self.type is not None:
            object.__setattr__(self, "_adapter", TypeAdapter(self.type))

    def cast(self, value: Any) -> Any:
        if value is None or self._adapter is None:
            return value
        return self._adapter.validate_python(value)

    def default_value(self) -> Any:
        value = evaluate(self.default)
        if isinstance(value, (dict, list, set)):
            value = copy.deepcopy(value)
        return self.cast(value)


def _differs(old: Any, new: Any) -> bool:
    if old is new:
        return False
    try:
        return bool(old != new)
    except (TypeError, ValueError):
        # Array-like values refuse to collapse elementwise comparison to a bool.
        return True


class AttributeStore:
    """Typed key/value store with defaults and change tracking."""

    def __init__(self, specs: Mapping[str, AttributeSpec], owner: str = "object"):
        self._specs = specs
        self._owner = owner
        self._values: dict[str, Any] = {name: spec.default_value() for name, spec in specs.items()}
        self._changes: dict[str, tuple[Any, Any]] = {}

    def declares(self, name: str) -> bool:
        return name in self._specs

    def spec(self, name: str) -> AttributeSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownAttributeError(f"unknown attribute '{name}' for {self._owner}") from None

    def get(self, name: str) -> Any:
        self.spec(name)
        return self._values[name]

    def set(self, name: str, value: Any) -> Any:
        """Coerce and store ``value``, recording the change; returns the stored value."""
        value = self.spec(name).cast(value)
        old = self._values[name]
        if _differs(old, value):
            first_old = self._changes.get(name, (old, None))[0]
            self._changes[name] = (first_old, value)
        self._values[name] = value
        return value

    @property
    def changes(self) -> dict[str, tuple[Any, Any]]:
        """``{name: (value before the first unapplied change, current value)}``."""
        return dict(self._changes)

    def changed(self, name: str) -> bool:
        return name in self._changes

    def changes_applied(self):
        self._changes.clear()

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __iter__(self):
        return iter(self._specs)
