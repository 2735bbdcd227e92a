"""Per-instance record of realized dependencies and the propagation of attribute changes."""

import logging
from typing import Any, Iterator, Mapping, Optional

from fasten.definition import DependencyDefinition, HostDefinition
from fasten.domain import GraphEntry

logger = logging.getLogger(__name__)

__all__ = ["DependencyGraph", "has_writer"]


def has_writer(target: Any, name: str) -> bool:
    """True if ``name`` can be assigned on ``target``.

    Hosts answer through their own ``has_writer``. For other objects the
    attribute must already exist and must not be a read-only property.
    """
    writer = getattr(type(target), "has_writer", None)
    if writer is not None:
        return target.has_writer(name)
    if not hasattr(target, name):
        return False
    descriptor = getattr(type(target), name, None)
    if isinstance(descriptor, property):
        return descriptor.fset is not None
    return not callable(getattr(target, name))


class DependencyGraph:
    """Realized dependencies of one host, keyed by component name.

    Entries are created by ``build`` (construction), ``resolve`` (reassignment)
    or ``get`` (first read of a lazy dependency), and replaced wholesale on
    reassignment. ``propagate`` pushes a host attribute's new value into every
    built dependency whose chosen option binds that attribute.
    """

    def __init__(self, definition: HostDefinition, host: Any):
        self._definition = definition
        self._host = host
        self._entries: dict[str, GraphEntry] = {}

    @property
    def entries(self) -> Mapping[str, GraphEntry]:
        return dict(self._entries)

    def definition(self, name: str) -> DependencyDefinition:
        return self._definition.dependencies[name]

    def build(self, values: Mapping[str, Any]):
        """Resolve every dependency supplied in ``values``, preset, or declared eager.

        A supplied ``None`` counts as absent.
        """
        for name, definition in self._definition.dependencies.items():
            if values.get(name) is not None:
                self.resolve(name, values[name])
            elif name in self._definition.presets:
                self.resolve(name, self._definition.presets[name].as_envelope())
            elif not definition.lazy:
                self.resolve(name, None)

    def resolve(self, name: str, raw: Any) -> GraphEntry:
        entry = self.definition(name).resolve(raw, self._host)
        self._entries[name] = entry
        return entry

    def is_built(self, name: str) -> bool:
        return name in self._entries

    def get(self, name: str) -> Any:
        """The instance for ``name``, building it from its preset or default on first read."""
        entry = self._entries.get(name)
        if entry is None:
            preset = self._definition.presets.get(name)
            entry = self.resolve(name, preset.as_envelope() if preset else None)
        return entry.instance

    def entry(self, name: str) -> Optional[GraphEntry]:
        return self._entries.get(name)

    def members(self) -> Iterator[tuple[str, Optional[Any], Any, Any]]:
        """Yield ``(component, key, instance, option)`` for every built member."""
        for name, entry in self._entries.items():
            for key, instance, option in entry.members():
                yield name, key, instance, option

    def propagate(self, attribute_name: str, value: Any):
        """Write ``value`` into every built dependency attribute bound to ``attribute_name``."""
        for component, key, instance, option in self.members():
            if option is None:
                continue
            for attr in option.bound_attributes(attribute_name):
                if not has_writer(instance, attr.name):
                    continue
                logger.debug(
                    "Propagating %s to %s%s.%s",
                    attribute_name,
                    component,
                    "" if key is None else f"[{key!r}]",
                    attr.name,
                )
                setattr(instance, attr.name, attr.apply_transform(value, self._host))

    def propagate_changes(self, changes: Mapping[str, Any]):
        for attribute_name, value in changes.items():
            self.propagate(attribute_name, value)
