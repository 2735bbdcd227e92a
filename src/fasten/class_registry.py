"""Explicit name-to-class registry used when options name their class by string."""

import inspect
from typing import Callable, Optional

from fasten.errors import ClassLookupError

__all__ = ["ClassRegistry", "classes", "inferred_name"]


def inferred_name(target: type) -> str:
    """Derive the registration name for a class: its qualified name.

    Example:
        >>> class S3Datasource: ...
        >>> inferred_name(S3Datasource)  # Returns "S3Datasource"
    """
    return target.__qualname__


class ClassRegistry:
    """Registry mapping string identifiers to classes.

    Option builders look names up here when ``set_class`` receives a string, so
    that a typo fails when the dependency is defined rather than when it is
    first built.

    Example:
        >>> registry = ClassRegistry()
        >>> @registry.registers()
        ... class LocalStorage:
        ...     pass
        >>> registry.lookup("LocalStorage") is LocalStorage
        True
    """

    def __init__(self):
        self._classes: dict[str, type] = {}

    def register(self, name: str, target: type):
        """Register a class explicitly under ``name``.

        Raises:
            ClassLookupError: If ``target`` is not a class, or ``name`` is taken by another class.
        """
        if not inspect.isclass(target):
            raise ClassLookupError(f"{target!r} is not a class and cannot be registered as {name!r}")
        existing = self._classes.get(name)
        if existing is not None and existing is not target:
            raise ClassLookupError(
                f"Class name {name!r} is already registered to {existing.__qualname__}"
            )
        self._classes[name] = target

    def registers(self, name: Optional[str] = None) -> Callable[[type], type]:
        """Decorator registering a class under ``name`` (defaults to its qualified name)."""

        def decorator(target: type) -> type:
            self.register(name or inferred_name(target), target)
            return target

        return decorator

    def lookup(self, name: str) -> type:
        try:
            return self._classes[name]
        except KeyError:
            raise ClassLookupError(
                f"Class name {name!r} is not registered. Known classes: {sorted(self._classes)}"
            ) from None

    def __contains__(self, name: str) -> bool:
        return name in self._classes


classes = ClassRegistry()
"""The registry consulted by option builders unless one is passed explicitly."""
