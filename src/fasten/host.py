"""The ``Host`` base class and the declarations used in its subclasses.

A host declares typed attributes and polymorphic dependencies in its class
body::

    class Pipeline(Host):
        root_dir = attribute(str)
        bucket = attribute(str, required=True)

        @dependency
        def datasource(d):
            d.option("local").set_class(LocalDatasource).bind_attribute("root_dir").default()
            d.option("s3").set_class(S3Datasource).bind_attribute("s3_bucket", source="bucket")

    class S3Pipeline(Pipeline):
        datasource = preset("s3")

Construction splits keyword arguments into attributes and dependency input,
stores the attributes, then resolves dependencies against them. Writes made
after construction are pushed into the dependencies bound to the attribute.
"""

import inspect
import logging
import os
from typing import Any, Callable, Mapping, Optional

from fasten.attributes import AttributeStore
from fasten.builders import DefinitionBuilder, DependencyBuilder, Factory
from fasten.compact import is_blank
from fasten.definition import HostDefinition
from fasten.domain import has_reader
from fasten.errors import UnknownAttributeError
from fasten.graph import DependencyGraph
from fasten.serializers import Serializer
from fasten.validation import BLANK, Errors

logger = logging.getLogger(__name__)

__all__ = ["Host", "Attribute", "Dependency", "attribute", "dependency", "preset", "detect_root_dir"]

ROOT_DIR = "root_dir"


class Attribute:
    """Class-body declaration of a typed attribute; a data descriptor on the host.

    Calling it with a function ``(self, value) -> value`` installs a custom
    writer run before coercion, so it can decorate one::

        @attribute(str)
        def name(self, value):
            return value.strip()
    """

    def __init__(
        self,
        type: Any = None,
        default: Any = None,
        required: bool = False,
        writer: Optional[Callable[[Any, Any], Any]] = None,
    ):
        self.type = type
        self.default = default
        self.required = required
        self.writer = writer
        self.name: Optional[str] = None

    def __call__(self, writer: Callable[[Any, Any], Any]) -> "Attribute":
        return Attribute(self.type, self.default, self.required, writer)

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return instance._store.get(self.name)

    def __set__(self, instance, value):
        instance._write_attribute(self.name, value)


class Dependency:
    """Class-body declaration of a dependency; reading builds, writing re-resolves."""

    def __init__(
        self,
        configure: Optional[Callable[[DependencyBuilder], Any]] = None,
        factory: Optional[Factory] = None,
        lazy: bool = True,
    ):
        self.configure = configure
        self.factory = factory
        self.lazy = lazy
        self.name: Optional[str] = None

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return instance._graph.get(self.name)

    def __set__(self, instance, value):
        instance._graph.resolve(self.name, value)


class _Preset:
    def __init__(self, option: Optional[str], values: Mapping[str, Any]):
        self.option = option
        self.values = dict(values)


def attribute(type: Any = None, default: Any = None, required: bool = False) -> Attribute:
    """Declare a typed attribute.

    Args:
        type: Any type pydantic can validate; None stores values as given.
        default: A value, or a function/partial called for each new instance.
        required: Whether ``is_valid`` reports blank values.
    """
    return Attribute(type, default, required)


def dependency(
    configure: Optional[Callable[[DependencyBuilder], Any]] = None,
    *,
    factory: Optional[Factory] = None,
    lazy: bool = True,
):
    """Declare a dependency.

    Usable bare as ``@dependency``, with arguments as ``@dependency(lazy=False)``,
    or as ``name = dependency(factory=OtherHost)`` to reuse another host's options.

    Args:
        configure: Function receiving the ``DependencyBuilder`` to declare options on.
        factory: Host class or definition whose matching dependency is reused.
        lazy: If true, absent input with no default option yields None instead of an error.
    """
    if configure is not None or factory is not None:
        return Dependency(configure, factory, lazy)

    def decorator(func: Callable[[DependencyBuilder], Any]) -> Dependency:
        return Dependency(func, None, lazy)

    return decorator


def preset(option: Optional[str] = None, **values) -> _Preset:
    """Hardcode a dependency's input in a subclass; callers supplying input still win.

    ``option`` defaults to the dependency's default option.
    """
    return _Preset(option, values)


def detect_root_dir(cls: type) -> str:
    """Directory of the module defining ``cls``, or ``""`` if it has no file."""
    try:
        return os.path.dirname(os.path.abspath(inspect.getfile(cls)))
    except TypeError:
        return ""


def _error_pairs(errors: Any):
    items = errors.items() if hasattr(errors, "items") else errors
    for field, messages in items:
        if isinstance(messages, (list, tuple)):
            for message in messages:
                yield field, message
        else:
            yield field, messages


class Host:
    """Base class for objects with typed attributes and resolved dependencies.

    Each subclass gets its own ``__definition__`` built from its class body and
    its base's definition.
    """

    __definition__: HostDefinition = HostDefinition("Host")

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        builder = DefinitionBuilder(cls.__qualname__, cls.__definition__)
        presets = {}
        for name, value in list(vars(cls).items()):
            if isinstance(value, Attribute):
                builder.attribute(name, value.type, value.default, value.required, value.writer)
            elif isinstance(value, Dependency):
                builder.dependency(name, value.configure, value.factory, value.lazy)
            elif isinstance(value, _Preset):
                presets[name] = value
                # Fall back to the base class's descriptor.
                delattr(cls, name)
        for name, value in presets.items():
            builder.preset(name, value.option, value.values)
        cls.__definition__ = builder.build()
        logger.debug(
            "Defined %s with attributes %s and dependencies %s",
            cls.__qualname__,
            list(cls.__definition__.attributes),
            list(cls.__definition__.dependencies),
        )

    def __init__(self, **attributes):
        definition = type(self).__definition__
        object.__setattr__(self, "_initialized", False)
        object.__setattr__(self, "_store", AttributeStore(definition.attributes, type(self).__name__))
        object.__setattr__(self, "_graph", DependencyGraph(definition, self))
        object.__setattr__(self, "_errors", Errors())

        dependency_values = {
            name: attributes.pop(name) for name in list(attributes) if name in definition.dependencies
        }
        root_dir = definition.attributes.get(ROOT_DIR)
        if root_dir is not None and root_dir.default is None:
            attributes.setdefault(ROOT_DIR, type(self).detect_root_dir())

        for name, value in attributes.items():
            self._check_writable(name)
            setattr(self, name, value)

        self._graph.build(dependency_values)
        self._store.changes_applied()
        self._initialized = True

    def __setattr__(self, name, value):
        if not name.startswith("_") and not hasattr(type(self), name):
            raise UnknownAttributeError(f"unknown attribute '{name}' for {type(self).__name__}")
        super().__setattr__(name, value)

    def _write_attribute(self, name: str, value: Any):
        spec = self._store.spec(name)
        if spec.writer is not None:
            value = spec.writer(self, value)
        value = self._store.set(name, value)
        if self._initialized:
            self._graph.propagate(name, value)
            self._store.changes_applied()

    def _check_writable(self, name: str):
        if not self.has_writer(name):
            raise UnknownAttributeError(f"unknown attribute '{name}' for {type(self).__name__}")

    def assign_attributes(self, values: Mapping[str, Any]):
        """Write several attributes, then propagate each changed one once.

        Dependency input in ``values`` is resolved after the attributes are written.
        """
        definition = type(self).__definition__
        plain = {name: value for name, value in values.items() if name not in definition.dependencies}
        for name in plain:
            self._check_writable(name)

        initialized, self._initialized = self._initialized, False
        try:
            for name, value in plain.items():
                setattr(self, name, value)
        finally:
            self._initialized = initialized

        try:
            for name, value in values.items():
                if name in definition.dependencies:
                    setattr(self, name, value)
        finally:
            # Committed values reach the dependencies even when resolution fails.
            if self._initialized:
                changes = {name: self._store.get(name) for name in self._store.changes}
                self._graph.propagate_changes(changes)
                self._store.changes_applied()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def attributes(self) -> dict[str, Any]:
        return self._store.to_dict()

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    @property
    def errors(self) -> Errors:
        return self._errors

    def has_reader(self, name: str) -> bool:
        definition = type(self).__definition__
        if name in definition.attributes or name in definition.dependencies:
            return True
        return isinstance(getattr(type(self), name, None), property)

    def has_writer(self, name: str) -> bool:
        definition = type(self).__definition__
        if name in definition.attributes or name in definition.dependencies:
            return True
        descriptor = getattr(type(self), name, None)
        return isinstance(descriptor, property) and descriptor.fset is not None

    def validate(self):
        """Hook for custom checks; add messages to ``self.errors``."""
        pass

    def is_valid(self) -> bool:
        self._errors.clear()
        for name, spec in type(self).__definition__.attributes.items():
            if spec.required and is_blank(self._store.get(name)):
                self._errors.add(name, BLANK)
        self.validate()
        return not self._errors

    def validate_dependencies(self) -> bool:
        """Validate every dependency, collecting failures as ``"<component>.<field>"``.

        Members of collections report as ``"<component>.<key>.<field>"``.
        """
        self._errors.clear()
        for name in type(self).__definition__.dependencies:
            getattr(self, name)

        for component, key, instance, option in self._graph.members():
            prefix = component if key is None else f"{component}.{key}"
            is_valid = getattr(instance, "is_valid", None)
            if callable(is_valid) and not is_valid():
                for field, message in _error_pairs(instance.errors):
                    self._errors.add(f"{prefix}.{field}", message)
            if option is None:
                continue
            for attr in option.attributes.values():
                if attr.required and has_reader(instance, attr.name) and is_blank(getattr(instance, attr.name)):
                    self._errors.add(f"{prefix}.{attr.name}", BLANK)
        return not self._errors

    @classmethod
    def detect_root_dir(cls) -> str:
        return detect_root_dir(cls)

    def serialize(self) -> dict[str, Any]:
        return Serializer().serialize(self)

    @classmethod
    def deserialize(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Hook adjusting deserialized attributes before the host is rebuilt."""
        return data

    def __repr__(self):
        values = ", ".join(f"{name}={value!r}" for name, value in self.attributes.items())
        return f"{type(self).__name__}({values})"
