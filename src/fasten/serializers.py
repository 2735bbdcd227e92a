"""Serialization of hosts and their dependency graphs to JSON-compatible maps.

Output is a flat map of the host's attributes merged with one block per
dependency. A scalar dependency is written as ``{option_name: payload}``;
lists and keyed maps of dependencies keep their shape with one such envelope
per member. Temporal values are tagged so they survive a JSON round trip::

    {"__type__": "datetime", "value": "2024-05-01T12:00:00+00:00"}
"""

import datetime
import json
import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from fasten.compact import deep_compact
from fasten.config import get_settings
from fasten.definition import DependencyDefinition
from fasten.domain import MAPPING, SEQUENCE
from fasten.errors import SerializationError

logger = logging.getLogger(__name__)

__all__ = ["Serializer", "tag_value", "untag_value"]

_TEMPORAL_TYPES = (
    ("datetime", datetime.datetime),
    ("date", datetime.date),
    ("time", datetime.time),
)


def tag_value(value: Any) -> Any:
    """Recursively replace temporal scalars with type-tagged maps."""
    if isinstance(value, dict):
        return {key: tag_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [tag_value(item) for item in value]
    for tag, kind in _TEMPORAL_TYPES:
        if isinstance(value, kind):
            settings = get_settings()
            return {settings.type_tag_key: tag, settings.type_value_key: value.isoformat()}
    return value


def untag_value(value: Any) -> Any:
    """Recursively restore type-tagged maps; unknown tags decode to their raw value."""
    settings = get_settings()
    if isinstance(value, dict):
        if settings.type_tag_key in value:
            tag = value[settings.type_tag_key]
            raw = value.get(settings.type_value_key)
            for name, kind in _TEMPORAL_TYPES:
                if tag == name and isinstance(raw, str):
                    return kind.fromisoformat(raw)
            return raw
        return {key: untag_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [untag_value(item) for item in value]
    return value


def _plain_attributes(obj: Any) -> dict[str, Any]:
    attributes = getattr(obj, "attributes", None)
    if isinstance(attributes, Mapping):
        return dict(attributes)
    return {name: value for name, value in vars(obj).items() if not name.startswith("_")}


def _definition_of(obj_or_class: Any):
    return getattr(obj_or_class, "__definition__", None)


class Serializer:
    """Converts hosts to and from JSON-compatible maps.

    Args:
        associations: Names managed by the persistence layer. They are written as
            a ``True`` sentinel and restored through an association reader on load.

    Example:
        >>> serializer = Serializer()
        >>> data = serializer.serialize(model)
        >>> copy = serializer.load(type(model), data)
    """

    def __init__(self, associations: Iterable[str] = ()):
        self.associations = frozenset(associations)

    def serialize(self, obj: Any) -> dict[str, Any]:
        """Serialize ``obj``'s attributes and dependencies into one map.

        Raises:
            SerializationError: If a dependency matches none of its options.
        """
        attributes = _plain_attributes(obj)
        blocks = {}
        definition = _definition_of(obj)
        if definition is not None:
            for name, dependency in definition.dependencies.items():
                if name in self.associations:
                    continue
                block = self.serialize_dependency(obj, name, dependency)
                if block is not None:
                    blocks[name] = block

        # Blocks stay as built: an empty payload still records the chosen option.
        data = tag_value({**deep_compact(attributes), **blocks})
        for name in self.associations:
            if name in data:
                data[name] = True
        logger.debug("Serialized %s with dependencies %s", type(obj).__name__, sorted(blocks))
        return data

    def serialize_dependency(self, host: Any, name: str, definition: DependencyDefinition) -> Any:
        instance = getattr(host, name)
        if instance is None:
            return None
        entry = host.graph.entry(name)
        if entry is not None and entry.shape == SEQUENCE:
            return [self._envelope(name, definition, member, option) for member, option in zip(entry.instance, entry.option)]
        if entry is not None and entry.shape == MAPPING:
            return {
                key: self._envelope(name, definition, member, entry.option.get(key))
                for key, member in entry.instance.items()
            }
        return self._envelope(name, definition, instance, entry.option if entry is not None else None)

    def _envelope(self, name: str, definition: DependencyDefinition, instance: Any, recorded: Any) -> dict[str, Any]:
        candidates = definition.matching_options(instance)
        if len(candidates) > 1 and recorded in candidates:
            candidates = (recorded,)
        if len(candidates) != 1:
            raise SerializationError(
                f"Don't know how to serialize dependency of type {name}, "
                f"available options are {definition.option_names}"
            )
        return {candidates[0].name: self.serialize_object(instance)}

    def serialize_object(self, obj: Any) -> Any:
        """A dependency's own ``serialize()`` if it has one, else its compacted attributes."""
        serialize = getattr(obj, "serialize", None)
        if callable(serialize):
            return serialize()
        return deep_compact(_plain_attributes(obj))

    def to_json(self, obj: Any) -> str:
        return json.dumps(self.serialize(obj))

    def deserialize(
        self,
        data: Any,
        host_class: Optional[type] = None,
        association_reader: Optional[Callable[[str], Any]] = None,
    ) -> dict[str, Any]:
        """Turn serialized output back into constructor input for ``host_class``.

        ``data`` may be a map or a JSON string. Association sentinels are replaced
        with ``association_reader(name)``, or dropped when there is no reader.
        The host class's ``deserialize`` hook runs on the whole map, and each
        dependency class's hook on its own payload.
        """
        if data is None:
            data = {}
        elif isinstance(data, (str, bytes)):
            data = json.loads(data or "{}")
        data = untag_value(dict(data))

        for name in self.associations & data.keys():
            if association_reader is None:
                del data[name]
            else:
                data[name] = association_reader(name)

        if host_class is None:
            return data
        hook = getattr(host_class, "deserialize", None)
        if callable(hook):
            data = hook(data)
        return self._deserialize_dependencies(data, host_class)

    def load(self, host_class: type, data: Any, association_reader: Optional[Callable[[str], Any]] = None) -> Any:
        """Rebuild an instance of ``host_class`` from serialized output."""
        return host_class(**self.deserialize(data, host_class, association_reader))

    def _deserialize_dependencies(self, data: dict[str, Any], host_class: type) -> dict[str, Any]:
        definition = _definition_of(host_class)
        if definition is None:
            return data
        for name, dependency in definition.dependencies.items():
            if name in self.associations or name not in data:
                continue
            data[name] = self._deserialize_block(data[name], dependency)
        return data

    def _deserialize_block(self, block: Any, definition: DependencyDefinition) -> Any:
        if isinstance(block, list):
            return [self._deserialize_envelope(item, definition) for item in block]
        if definition.is_collection(block):
            return {key: self._deserialize_envelope(item, definition) for key, item in block.items()}
        return self._deserialize_envelope(block, definition)

    def _deserialize_envelope(self, envelope: Any, definition: DependencyDefinition) -> Any:
        if not isinstance(envelope, dict) or len(envelope) != 1:
            return envelope
        (option_name, payload), = envelope.items()
        option = definition.get_option(option_name)
        if option is None or option.target is None or not isinstance(payload, dict):
            return envelope
        hook = getattr(option.target, "deserialize", None)
        if callable(hook):
            payload = hook(payload)
        payload = self._deserialize_dependencies(payload, option.target)
        return {option_name: payload}
