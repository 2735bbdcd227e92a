"""Builders collecting declarations into immutable definitions."""

import inspect
from typing import Any, Callable, Mapping, Optional, Union

from fasten.attributes import AttributeSpec
from fasten.class_registry import ClassRegistry, classes
from fasten.definition import DependencyDefinition, Discriminator, HostDefinition
from fasten.domain import ConfigAttr, Option, Preset
from fasten.errors import DefinitionError

__all__ = [
    "OptionBuilder",
    "DependencyBuilder",
    "DefinitionBuilder",
    "make_dependency_definition",
    "SINGLE_OPTION",
]

SINGLE_OPTION = "default"
"""Name of the option synthesized when a dependency calls ``set_class`` directly."""

Factory = Union[type, HostDefinition, DependencyDefinition]


class OptionBuilder:
    """Collects one option's class and bound attributes.

    Example:
        >>> option = OptionBuilder("s3")
        >>> option.set_class(S3Datasource).bind_attribute("s3_bucket", required=True)
        >>> option.build().attributes["s3_bucket"].required
        True
    """

    def __init__(self, name: str, class_registry: ClassRegistry = classes):
        self.name = name
        self._class_registry = class_registry
        self._target: Optional[type] = None
        self._attributes: dict[str, ConfigAttr] = {}
        self._is_default = False
        self._is_only = False

    def set_class(self, target: Union[type, str]) -> "OptionBuilder":
        """Set the class this option builds, given the class itself or its registered name.

        Raises:
            ClassLookupError: If a string names no registered class.
            DefinitionError: If ``target`` is neither a class nor a string.
        """
        if isinstance(target, str):
            target = self._class_registry.lookup(target)
        elif not inspect.isclass(target):
            raise DefinitionError(
                f"Class for option '{self.name}' must be a class or a registered class name, "
                f"got {target!r}"
            )
        self._target = target
        return self

    def bind_attribute(
        self,
        name: str,
        default: Any = None,
        required: bool = False,
        source: Optional[str] = None,
        transform: Optional[Callable[..., Any]] = None,
    ) -> "OptionBuilder":
        self._attributes[name] = ConfigAttr(name, default, required, source, transform)
        return self

    def default(self) -> "OptionBuilder":
        self._is_default = True
        return self

    def only(self) -> "OptionBuilder":
        self._is_only = True
        return self

    @property
    def is_default(self) -> bool:
        return self._is_default

    def build(self) -> Option:
        return Option(self.name, self._target, dict(self._attributes), self._is_default, self._is_only)


class DependencyBuilder:
    """Collects the options of one dependency.

    A dependency either declares named options, or calls ``set_class`` and
    ``bind_attribute`` directly (which configure a single synthesized option),
    or delegates to a factory.

    Example:
        >>> dependency = DependencyBuilder("storage")
        >>> dependency.option("local").set_class(LocalStorage).bind_attribute("directory")
        >>> dependency.option("s3").set_class(S3Storage).bind_attribute("bucket")
        >>> @dependency.when
        ... def choose(value, host):
        ...     if isinstance(value, str):
        ...         return Choice("s3" if value.startswith("s3://") else "local")
        >>> definition = dependency.build()
    """

    def __init__(self, component: str, lazy: bool = True, class_registry: ClassRegistry = classes):
        self.component = component
        self.lazy = lazy
        self._class_registry = class_registry
        self._options: dict[str, OptionBuilder] = {}
        self._single: Optional[OptionBuilder] = None
        self._discriminator: Optional[Discriminator] = None
        self._delegate: Optional[DependencyDefinition] = None

    def option(
        self, name: str, configure: Optional[Callable[[OptionBuilder], Any]] = None
    ) -> OptionBuilder:
        """Declare an option, optionally configuring it with ``configure(builder)``."""
        if name in self._options:
            raise DefinitionError(f"Option '{name}' is declared twice for {self.component}")
        builder = OptionBuilder(name, self._class_registry)
        if configure is not None:
            configure(builder)
        self._options[name] = builder
        return builder

    def set_class(self, target: Union[type, str]) -> "DependencyBuilder":
        self._single_option().set_class(target)
        return self

    def bind_attribute(
        self,
        name: str,
        default: Any = None,
        required: bool = False,
        source: Optional[str] = None,
        transform: Optional[Callable[..., Any]] = None,
    ) -> "DependencyBuilder":
        self._single_option().bind_attribute(name, default, required, source, transform)
        return self

    def when(self, discriminator: Discriminator) -> Discriminator:
        """Set the discriminator; usable as a decorator.

        The discriminator runs before the single-key ``{option: args}`` shorthand and
        its choice wins, so it sees explicit option maps too. Return None for input it
        does not recognize, such as maps, to let the shorthand or default apply;
        a ``rebind_as`` choice would otherwise wrap the whole map as one argument.
        """
        self._discriminator = discriminator
        return discriminator

    def set_factory(self, factory: Factory) -> "DependencyBuilder":
        """Reuse another definition's options instead of declaring them.

        ``factory`` may be a host class, a ``HostDefinition`` or a ``DependencyDefinition``.

        Raises:
            DefinitionError: If the factory's dependency for this component is ambiguous.
        """
        if isinstance(factory, DependencyDefinition):
            self._delegate = factory
            return self
        host_definition = getattr(factory, "__definition__", factory)
        if not isinstance(host_definition, HostDefinition):
            raise DefinitionError(
                f"Factory for {self.component} must be a host class or definition, got {factory!r}"
            )
        self._delegate = host_definition.delegate_for(self.component)
        return self

    def build(self) -> DependencyDefinition:
        """Freeze the declarations.

        Raises:
            DefinitionError: If several options are marked default, or a factory is
                combined with declared options.
        """
        if self._delegate is not None and self._options:
            raise DefinitionError(
                f"{self.component} delegates to a factory and cannot also declare options"
            )

        defaults = [name for name, builder in self._options.items() if builder.is_default]
        if len(defaults) > 1 or (defaults and self._single is not None and defaults != [SINGLE_OPTION]):
            raise DefinitionError(
                f"Multiple default options found for {self.component}: {defaults}"
            )

        return DependencyDefinition(
            self.component,
            {name: builder.build() for name, builder in self._options.items()},
            defaults[0] if defaults else None,
            self._discriminator,
            self._delegate,
            self.lazy,
        )

    def _single_option(self) -> OptionBuilder:
        if self._single is None:
            self._single = self.option(SINGLE_OPTION).only().default()
        return self._single


def make_dependency_definition(
    component: str,
    configure: Optional[Callable[[DependencyBuilder], Any]] = None,
    factory: Optional[Factory] = None,
    lazy: bool = True,
    class_registry: ClassRegistry = classes,
) -> DependencyDefinition:
    """Build a ``DependencyDefinition`` from a configuration callback or a factory.

    Args:
        component: The dependency's name on the host.
        configure: Called with a ``DependencyBuilder`` to declare options.
        factory: Host class or definition whose options to reuse.
        lazy: Whether absent input without a default yields no instance.
        class_registry: Registry consulted when options name classes by string.

    Raises:
        DefinitionError: If the declarations are inconsistent.
    """
    builder = DependencyBuilder(component, lazy, class_registry)
    if factory is not None:
        builder.set_factory(factory)
    if configure is not None:
        configure(builder)
    return builder.build()


class DefinitionBuilder:
    """Collects a host class's attributes, dependencies and presets.

    Starting from ``base`` copies the base definition's declarations, which
    later declarations may override.
    """

    def __init__(
        self,
        name: str,
        base: Optional[HostDefinition] = None,
        class_registry: ClassRegistry = classes,
    ):
        self.name = name
        self._class_registry = class_registry
        self._attributes: dict[str, AttributeSpec] = dict(base.attributes) if base else {}
        self._dependencies: dict[str, DependencyDefinition] = dict(base.dependencies) if base else {}
        self._presets: dict[str, Preset] = dict(base.presets) if base else {}

    def attribute(
        self,
        name: str,
        type: Any = None,
        default: Any = None,
        required: bool = False,
        writer: Optional[Callable[[Any, Any], Any]] = None,
    ) -> "DefinitionBuilder":
        if name in self._dependencies:
            raise DefinitionError(f"{self.name}.{name} is already declared as a dependency")
        self._attributes[name] = AttributeSpec(name, type, default, required, writer)
        return self

    def dependency(
        self,
        name: str,
        configure: Optional[Callable[[DependencyBuilder], Any]] = None,
        factory: Optional[Factory] = None,
        lazy: bool = True,
    ) -> "DefinitionBuilder":
        if name in self._attributes:
            raise DefinitionError(f"{self.name}.{name} is already declared as an attribute")
        self._dependencies[name] = make_dependency_definition(
            name, configure, factory, lazy, self._class_registry
        )
        return self

    def preset(self, name: str, option: Optional[str] = None, values: Optional[Mapping[str, Any]] = None) -> "DefinitionBuilder":
        """Hardcode the input of dependency ``name`` for instances given none.

        Raises:
            DefinitionError: If ``name`` is not a dependency, or the option is unknown
                or cannot be inferred.
        """
        definition = self._dependencies.get(name)
        if definition is None:
            raise DefinitionError(f"Cannot preset {self.name}.{name}: no such dependency")
        option = option or definition.default_option_name
        if option is None:
            raise DefinitionError(
                f"Cannot preset {self.name}.{name} without an option: it has no default option"
            )
        if definition.get_option(option) is None:
            raise DefinitionError(
                f"Unknown {name} option '{option}'. Allowed options are {definition.option_names}"
            )
        self._presets[name] = Preset(option, dict(values or {}))
        return self

    def build(self) -> HostDefinition:
        return HostDefinition(self.name, self._attributes, self._dependencies, self._presets)
