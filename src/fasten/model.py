"""Persisted records whose behaviour lives in a pluggable service host.

A ``Model`` row stores a few plain columns, the key of the service class it
uses (``<snake_name>_type``) and the service's serialized configuration::

    class Dataset(Model):
        table = "datasets"
        columns = ("name",)
        services = ServiceRegistry()
        delegates = ("load",)

    Dataset.services.register("s3", S3Dataset)

    record = Dataset(store, name="train", dataset_type="s3", bucket="data").save()
    Dataset.find(store, record.id).load()
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Mapping, Optional

from fasten.config import get_settings
from fasten.errors import ResolutionError, UnknownAttributeError
from fasten.host import ROOT_DIR, detect_root_dir
from fasten.serializers import Serializer
from fasten.storage import SQLiteRecordStore

logger = logging.getLogger(__name__)

__all__ = ["Model", "ServiceRegistry", "Association", "snake_name"]


def snake_name(name: str) -> str:
    """``"TrainingDataset"`` -> ``"training_dataset"``."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass(frozen=True)
class Association:
    """A record of ``model`` referenced through the ``foreign_key`` column."""

    name: str
    foreign_key: str
    model: type


class ServiceRegistry:
    """Service classes keyed by the value of a model's type column.

    Example:
        >>> services = ServiceRegistry()
        >>> services.register("s3", S3Dataset)
        >>> @services.resolver
        ... def by_bucket(attributes):
        ...     return "s3" if attributes.get("bucket") else None
    """

    def __init__(self):
        self._services: dict[str, type] = {}
        self._resolver: Optional[Callable[[Mapping[str, Any]], Optional[str]]] = None

    def register(self, key: str, service_class: Optional[type] = None):
        """Register ``service_class`` under ``key``; without a class, return a decorator."""
        if service_class is None:

            def decorator(target: type) -> type:
                self.register(key, target)
                return target

            return decorator
        self._services[str(key)] = service_class
        return service_class

    def resolver(self, func: Callable[[Mapping[str, Any]], Optional[str]]):
        """Set the function choosing a key from constructor attributes; usable as a decorator."""
        self._resolver = func
        return func

    @property
    def options(self) -> list[str]:
        return list(self._services)

    @property
    def default_key(self) -> Optional[str]:
        if len(self._services) == 1:
            return next(iter(self._services))
        return None

    def __getitem__(self, key: Optional[str]) -> Optional[type]:
        if key is None:
            return None
        return self._services.get(str(key))

    def __contains__(self, key: str) -> bool:
        return str(key) in self._services

    def resolve_key(self, attributes: Mapping[str, Any], option_key: str) -> Optional[str]:
        key = attributes.get(option_key)
        if key is None and self._resolver is not None:
            key = self._resolver(attributes)
        return key if key is not None else self.default_key

    def resolve(self, attributes: Mapping[str, Any], option_key: str, owner: str) -> type:
        """The service class for ``attributes``.

        Raises:
            ResolutionError: If no registered service matches.
        """
        key = self.resolve_key(attributes, option_key)
        service_class = self[key]
        if service_class is None:
            raise ResolutionError(
                f"{owner} requires argument {option_key}. Invalid option key received: {key}. "
                f"Allowed options are: {self.options}"
            )
        return service_class


def _service_attribute_names(service_class: type) -> set[str]:
    definition = getattr(service_class, "__definition__", None)
    if definition is None:
        return set()
    return set(definition.attributes) | set(definition.dependencies)


class Model:
    """A stored record delegating behaviour to a service host.

    Attributes:
        table: Table holding the records.
        columns: Plain columns stored on the record rather than in the service.
        associations: Records referenced through foreign-key columns.
        services: Registry of service classes selectable by the type column.
        delegates: Service attribute and method names readable on the record itself.
    """

    table: ClassVar[str] = ""
    columns: ClassVar[tuple[str, ...]] = ()
    associations: ClassVar[tuple[Association, ...]] = ()
    services: ClassVar[ServiceRegistry]
    delegates: ClassVar[tuple[str, ...]] = ()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "services" not in vars(cls):
            cls.services = ServiceRegistry()
        if not cls.table:
            cls.table = snake_name(cls.__name__)

    @classmethod
    def option_key(cls) -> str:
        return f"{snake_name(cls.__name__)}_type"

    @classmethod
    def service_attribute_name(cls) -> str:
        return f"{snake_name(cls.__name__)}_service"

    @classmethod
    def stored_columns(cls) -> list[str]:
        foreign_keys = [association.foreign_key for association in cls.associations]
        names = [*cls.columns, *foreign_keys, cls.option_key(), get_settings().configuration_column]
        return list(dict.fromkeys(names))

    @classmethod
    def serializer(cls) -> Serializer:
        return Serializer(association.name for association in cls.associations)

    def __init__(self, store: SQLiteRecordStore, **attributes):
        self._init_record(store, attributes.pop("id", None))
        attributes.setdefault(ROOT_DIR, detect_root_dir(type(self)))
        option_key = type(self).option_key()
        key = type(self).services.resolve_key(attributes, option_key)
        if key is not None:
            attributes[option_key] = key
        self._assign_record(attributes)
        self.service = self._build_service(attributes)

    def _init_record(self, store: SQLiteRecordStore, id: Optional[int]):
        self.store = store
        self.id = id
        self._record: dict[str, Any] = {name: None for name in type(self).stored_columns()}
        self._associated: dict[str, Any] = {}

    def _assign_record(self, attributes: Mapping[str, Any]):
        for association in type(self).associations:
            if association.name in attributes:
                target = attributes[association.name]
                self._associated[association.name] = target
                self._record[association.foreign_key] = getattr(target, "id", None)
        for name, value in attributes.items():
            if name in self._record and name != get_settings().configuration_column:
                self._record[name] = value
                self._associated.pop(self._association_for_key(name), None)

    def _association_for_key(self, foreign_key: str) -> Optional[str]:
        for association in type(self).associations:
            if association.foreign_key == foreign_key:
                return association.name
        return None

    def association(self, name: str) -> Any:
        """The associated record ``name``, loaded from the store on first read."""
        if name not in self._associated:
            association = next(a for a in type(self).associations if a.name == name)
            key = self._record.get(association.foreign_key)
            self._associated[name] = (
                association.model.find(self.store, key) if key is not None else None
            )
        return self._associated[name]

    def _service_attributes(self, attributes: Mapping[str, Any], service_class: type) -> dict[str, Any]:
        allowed = _service_attribute_names(service_class)
        values = {}
        for name, value in attributes.items():
            association = self._association_for_key(name)
            if association is not None:
                values[association] = self.association(association)
            else:
                values[name] = value
        return {name: value for name, value in values.items() if name in allowed}

    def _build_service(self, attributes: Mapping[str, Any]) -> Any:
        cls = type(self)
        service_class = cls.services.resolve(attributes, cls.option_key(), cls.__name__)
        service = service_class(**self._service_attributes(attributes, service_class))
        logger.debug("Built %s service %s", cls.__name__, service_class.__name__)
        return service

    def assign_attributes(self, values: Mapping[str, Any]):
        """Write record columns, then pass the remaining values to the service.

        Raises:
            UnknownAttributeError: If the service cannot write a remaining value.
        """
        self._assign_record(values)
        association_names = {association.name for association in type(self).associations}
        service_values = self._service_attributes(values, type(self.service))
        for name, value in values.items():
            if name in self._record or name in association_names or name in service_values:
                continue
            if not self.service.has_writer(name):
                raise UnknownAttributeError(
                    f"unknown attribute '{name}' for {type(self.service).__name__}"
                )
            service_values[name] = value
        self.service.assign_attributes(service_values)

    def save(self) -> "Model":
        """Serialize the service into the configuration column and write the row."""
        cls = type(self)
        self._record[get_settings().configuration_column] = cls.serializer().to_json(self.service)
        self.store.ensure_table(cls.table, cls.stored_columns())
        if self.id is None:
            self.id = self.store.insert(cls.table, self._record)
        else:
            self.store.update(cls.table, self.id, self._record)
        logger.debug("Saved %s %s", cls.__name__, self.id)
        return self

    @classmethod
    def find(cls, store: SQLiteRecordStore, id: int) -> Optional["Model"]:
        """Load the record ``id`` and rebuild its service, or None if there is no such row."""
        store.ensure_table(cls.table, cls.stored_columns())
        row = store.fetch(cls.table, id)
        if row is None:
            return None
        record = cls.__new__(cls)
        record._init_record(store, row.pop("id"))
        configuration = row.pop(get_settings().configuration_column, None)
        record._assign_record(row)

        service_class = cls.services.resolve(row, cls.option_key(), cls.__name__)
        data = cls.serializer().deserialize(configuration, service_class, record.association)
        record.service = service_class(**record._service_attributes(data, service_class))
        return record

    @property
    def record(self) -> dict[str, Any]:
        return dict(self._record)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        cls = type(self)
        if name in self._record:
            return self._record[name]
        if any(association.name == name for association in cls.associations):
            return self.association(name)
        if name == cls.service_attribute_name():
            return self.service
        if name in cls.delegates:
            return getattr(self.service, name)
        raise AttributeError(f"{cls.__name__} has no attribute '{name}'")

    def __repr__(self):
        return f"{type(self).__name__}(id={self.id!r}, service={self.service!r})"
