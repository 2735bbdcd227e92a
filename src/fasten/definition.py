"""Dependency definitions and the algorithm that turns raw input into instances.

A ``DependencyDefinition`` is the immutable registry of options for one named
dependency slot. Resolution runs once per construction or reassignment:

1. Lists resolve element by element, maps whose keys name no option resolve
   value by value, everything else resolves as a single value.
2. A single value is accepted as-is when it is already an instance of an
   option's class. Otherwise an explicit ``{"option_name": ..., "value": ...}``
   envelope, the discriminator, a single-key ``{option: args}`` map and finally
   the default option are consulted, in that order.
3. The chosen option's class is instantiated with arguments completed from the
   host (see ``Option.build_arguments``).
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from fasten.attributes import AttributeSpec
from fasten.config import get_settings
from fasten.domain import MAPPING, SEQUENCE, Choice, GraphEntry, Option, Preset
from fasten.errors import DefinitionError, ResolutionError, UnknownOptionError

logger = logging.getLogger(__name__)

__all__ = ["DependencyDefinition", "HostDefinition", "Discriminator"]

Discriminator = Callable[[Any, Any], Union[Choice, str, None]]


@dataclass(frozen=True, eq=False)
class DependencyDefinition:
    """Options for one dependency slot, plus how to choose between them.

    Attributes:
        component: The dependency's name on the host.
        options: Options keyed by name.
        default_option: Name of the option built when input does not choose one.
        discriminator: ``(raw, host)`` returning a ``Choice``, an option name or None.
        delegate: Another definition whose options, default and discriminator are used instead.
        lazy: Absent input with no default yields no instance instead of an error.
    """

    component: str
    options: Mapping[str, Option] = field(default_factory=dict)
    default_option: Optional[str] = None
    discriminator: Optional[Discriminator] = None
    delegate: Optional["DependencyDefinition"] = None
    lazy: bool = True
    _by_class: Mapping[type, tuple[Option, ...]] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self):
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))
        by_class: dict[type, tuple[Option, ...]] = {}
        for option in self.options.values():
            if option.target is not None:
                by_class[option.target] = by_class.get(option.target, ()) + (option,)
        object.__setattr__(self, "_by_class", MappingProxyType(by_class))

    @property
    def effective(self) -> "DependencyDefinition":
        """The definition whose options are actually used (follows delegation)."""
        return self.delegate.effective if self.delegate is not None else self

    @property
    def option_names(self) -> list[str]:
        return list(self.effective.options)

    @property
    def default_option_name(self) -> Optional[str]:
        return self.effective.default_option

    @property
    def only_option(self) -> Optional[Option]:
        return next((o for o in self.effective.options.values() if o.is_only), None)

    def get_option(self, name: Any) -> Optional[Option]:
        return self.effective.options.get(name)

    def matching_options(self, value: Any) -> tuple[Option, ...]:
        """Options whose class is the nearest registered class in ``value``'s MRO."""
        by_class = self.effective._by_class
        for klass in type(value).__mro__:
            if klass in by_class:
                return by_class[klass]
        return ()

    def injected_option(self, value: Any, component: Optional[str] = None) -> Optional[Option]:
        """The option ``value`` is a pre-built instance of, if any.

        Raises:
            ResolutionError: If two options share the value's class.
        """
        candidates = self.matching_options(value)
        if len(candidates) > 1:
            raise ResolutionError(
                f"Cannot inject {type(value).__name__} into {component or self.component}: "
                f"it matches options {[o.name for o in candidates]}"
            )
        return candidates[0] if candidates else None

    def resolve(self, raw: Any, host: Any) -> GraphEntry:
        """Resolve ``raw`` into a graph entry shaped like the input.

        Raises:
            ResolutionError: If nothing can be built and the definition is not lazy.
            UnknownOptionError: If input names an undeclared option.
        """
        if raw is None and self.default_option_name is None:
            if self.lazy:
                return GraphEntry(self.component, None, None)
            if self.effective.discriminator is None:
                raise ResolutionError(
                    f"No default option or discriminator present for {self.component}. "
                    "Don't know how to build!"
                )

        if isinstance(raw, (list, tuple)):
            self._validate_members((None, item) for item in raw)
            resolved = [self.resolve_one(item, host) for item in raw]
            return GraphEntry(
                self.component,
                [instance for instance, _ in resolved],
                [option for _, option in resolved],
                SEQUENCE,
            )

        if self.is_collection(raw):
            self._validate_members(raw.items())
            resolved = {key: self.resolve_one(item, host) for key, item in raw.items()}
            return GraphEntry(
                self.component,
                {key: instance for key, (instance, _) in resolved.items()},
                {key: option for key, (_, option) in resolved.items()},
                MAPPING,
            )

        instance, option = self.resolve_one(raw, host)
        if instance is None and not self.lazy:
            raise ResolutionError(
                f"Nothing chosen for {self.component} given {raw!r}. Don't know how to build!"
            )
        return GraphEntry(self.component, instance, option)

    def is_collection(self, raw: Any) -> bool:
        """True if ``raw`` is a map of named members rather than one member's input."""
        if not isinstance(raw, dict):
            return False
        options = self.effective.options
        if len(options) == 1 and self.only_option is not None:
            return False
        if get_settings().envelope_option_key in raw:
            return False
        return not any(key in options for key in raw)

    def resolve_one(
        self, raw: Any, host: Any, component: Optional[str] = None
    ) -> tuple[Any, Optional[Option]]:
        """Resolve a single value into ``(instance, option)``."""
        component = component or self.component

        injected = self.injected_option(raw, component)
        if injected is not None:
            logger.debug("Injecting pre-built %s into %s", type(raw).__name__, component)
            return raw, injected

        if self.delegate is not None:
            return self.delegate.resolve_one(raw, host, component)

        settings = get_settings()
        if isinstance(raw, dict) and settings.envelope_option_key in raw:
            option_name = raw[settings.envelope_option_key]
            raw = raw.get(settings.envelope_value_key)
        else:
            option_name, raw = self._choose(raw, host, component)

        if option_name is None:
            if raw is None:
                return None, None
            raise ResolutionError(
                f"No default option or discriminator choice for {component} "
                f"given {raw!r}. Don't know how to build!"
            )

        option = self.options.get(option_name)
        if option is None:
            raise UnknownOptionError(
                f"Unknown {component} option '{option_name}'. "
                f"Allowed options are {list(self.options)}"
            )
        logger.debug("Resolved %s to option '%s'", component, option.name)
        return option.instantiate(raw, host, component), option

    def _choose(self, raw: Any, host: Any, component: str) -> tuple[Optional[str], Any]:
        option_name = None

        if self.discriminator is not None:
            choice = self.discriminator(raw, host)
            if isinstance(choice, str):
                choice = Choice(choice)
            if choice is not None:
                option_name = choice.option
                if choice.rebind_as and raw is not None:
                    raw = {choice.rebind_as: raw}

        if option_name is None and isinstance(raw, dict) and len(raw) == 1:
            (key, inner), = raw.items()
            if key in self.options:
                option_name, raw = key, inner
            else:
                only = self.only_option
                if only is None:
                    raise UnknownOptionError(
                        f"Unknown {component} option: {key}. "
                        f"Allowed options are {list(self.options)}"
                    )
                if key not in only.attributes:
                    raise UnknownOptionError(
                        f"Unknown {component} option: {key}. {only.target_name} "
                        f"binds {list(only.attributes)}"
                    )

        if option_name is None:
            option_name = self.default_option
        return option_name, raw

    def _validate_members(self, members: Iterable[tuple[Any, Any]]):
        """Check that every map member of a collection names an option first.

        ``members`` yields ``(key, member)``; list members have a None key.
        """
        if self.only_option is not None:
            return
        options = self.effective.options
        option_key = get_settings().envelope_option_key
        for key, member in members:
            if not isinstance(member, dict) or option_key in member:
                continue
            first = next(iter(member), None)
            if first is None or first not in options:
                raise UnknownOptionError(
                    f"Unknown {self.component} option: {first if key is None else key}. "
                    f"Allowed options are {list(options)}"
                )


@dataclass(frozen=True, eq=False)
class HostDefinition:
    """Everything a host class declares: attributes, dependencies and presets.

    Built once per class by ``DefinitionBuilder``; subclasses get a new
    definition extending their base's rather than mutating it.
    """

    name: str
    attributes: Mapping[str, AttributeSpec] = field(default_factory=dict)
    dependencies: Mapping[str, DependencyDefinition] = field(default_factory=dict)
    presets: Mapping[str, Preset] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("attributes", "dependencies", "presets"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    def delegate_for(self, component: str) -> DependencyDefinition:
        """Pick the dependency a component delegating to this host should reuse.

        Raises:
            DefinitionError: If no dependency matches ``component`` and there is not exactly one.
        """
        if component in self.dependencies:
            return self.dependencies[component]
        if len(self.dependencies) == 1:
            return next(iter(self.dependencies.values()))
        raise DefinitionError(
            f"Don't know how to use factory {self.name} for component {component}: "
            f"it declares dependencies {list(self.dependencies)}"
        )
