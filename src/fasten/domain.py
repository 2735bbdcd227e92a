"""Domain models used throughout the framework."""

import copy
import functools
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Optional, Union

from fasten.compact import deep_compact
from fasten.config import get_settings
from fasten.errors import ReservedAttributeError, ResolutionError

logger = logging.getLogger(__name__)

__all__ = [
    "ConfigAttr",
    "Option",
    "Choice",
    "Preset",
    "GraphEntry",
    "SCALAR",
    "SEQUENCE",
    "MAPPING",
    "evaluate",
    "has_reader",
]


def evaluate(value: Any) -> Any:
    """Call ``value`` if it is a thunk (function, bound method or partial), else return it."""
    if inspect.isfunction(value) or inspect.ismethod(value) or isinstance(value, functools.partial):
        return value()
    return value


def has_reader(parent: Any, name: str) -> bool:
    """True if ``parent`` exposes a readable attribute called ``name``.

    Hosts answer through their own ``has_reader`` so that methods are never
    mistaken for attributes.
    """
    if parent is None:
        return False
    reader = getattr(type(parent), "has_reader", None)
    if reader is not None:
        return parent.has_reader(name)
    return hasattr(parent, name)


def _accepts_context(func: Optional[Callable]) -> bool:
    if func is None:
        return False
    try:
        parameters = inspect.signature(func).parameters.values()
    except (TypeError, ValueError):
        return False
    positional = [
        p for p in parameters
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    return len(positional) >= 2 or any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in parameters)


@dataclass(frozen=True)
class ConfigAttr:
    """A constructor argument of an option, optionally bound to a host attribute.

    Attributes:
        name: The keyword the option's class receives.
        default: A value, or a thunk producing one, used when nothing else supplies it.
        required: Whether a blank value is reported by ``validate_dependencies``.
        source: Host attribute to read from when it differs from ``name``.
        transform: ``(value)`` or ``(value, host)`` applied to non-None values.
    """

    name: str
    default: Any = None
    required: bool = False
    source: Optional[str] = None
    transform: Optional[Callable[..., Any]] = None
    _transform_takes_context: bool = field(init=False, repr=False, compare=False, default=False)

    def __post_init__(self):
        object.__setattr__(self, "_transform_takes_context", _accepts_context(self.transform))

    def resolve(self, value: Any, context: Any = None) -> Any:
        """Evaluate thunks, fall back to the default, then apply the transform."""
        value = evaluate(value)
        if value is None and self.default is not None:
            value = self.default_value()
        return self.apply_transform(value, context)

    def default_value(self) -> Any:
        value = evaluate(self.default)
        if isinstance(value, (dict, list, set)):
            return copy.deepcopy(value)
        return value

    def apply_transform(self, value: Any, context: Any = None) -> Any:
        if self.transform is None or value is None:
            return value
        if self._transform_takes_context:
            return self.transform(value, context)
        return self.transform(value)

    def is_bound_to(self, attribute_name: str) -> bool:
        return self.source == attribute_name or self.name == attribute_name


@dataclass(frozen=True, eq=False)
class Option:
    """One concrete implementation choice for a dependency.

    Attributes:
        name: The option's tag, used in envelopes and serialized output.
        target: The class instantiated for this option (None until ``set_class`` is called).
        attributes: Bound constructor arguments keyed by name.
        is_default: Whether this option is built when input does not pick one.
        is_only: Whether this is the synthesized option of a single-class dependency.
    """

    name: str
    target: Optional[type]
    attributes: Mapping[str, ConfigAttr]
    is_default: bool = False
    is_only: bool = False

    def bound_attributes(self, attribute_name: str) -> list[ConfigAttr]:
        """Config attributes tracking the host attribute ``attribute_name``."""
        return [attr for attr in self.attributes.values() if attr.is_bound_to(attribute_name)]

    def build_arguments(self, supplied: Mapping[str, Any], parent: Any) -> dict[str, Any]:
        """Complete ``supplied`` constructor arguments from the parent and defaults.

        Each bound attribute missing from ``supplied`` is read from the parent's
        ``source`` attribute, else the parent's attribute of the same name, else
        the default, and passed through ``ConfigAttr.resolve``. Supplied values
        win and are not transformed. Blank values are dropped.

        Raises:
            ReservedAttributeError: If the result binds a reserved name such as ``id``.
        """
        arguments = dict(supplied)
        for name, attr in self.attributes.items():
            if name in arguments:
                continue
            if attr.source and has_reader(parent, attr.source):
                value = getattr(parent, attr.source)
            elif has_reader(parent, name):
                value = getattr(parent, name)
            else:
                value = attr.default
            arguments[name] = attr.resolve(value, parent)

        arguments = deep_compact(arguments)

        reserved = sorted(get_settings().reserved_attributes & arguments.keys())
        if reserved:
            raise ReservedAttributeError(
                f"cannot bind attribute '{reserved[0]}' between {type(parent).__name__} "
                f"and {self.target_name}. '{reserved[0]}' is reserved for storage primary keys"
            )
        return arguments

    def instantiate(self, raw: Any, parent: Any, component: str) -> Any:
        if self.target is None:
            raise ResolutionError(f"Option '{self.name}' of {component} does not set a class")
        supplied = raw if isinstance(raw, dict) else {}
        arguments = self.build_arguments(supplied, parent)
        logger.debug("Building %s option '%s' as %s", component, self.name, self.target_name)
        return self.target(**arguments)

    @property
    def target_name(self) -> str:
        return self.target.__name__ if self.target is not None else "<no class>"


@dataclass(frozen=True)
class Choice:
    """A discriminator's decision: build ``option``, wrapping scalar input as ``{rebind_as: input}``."""

    option: str
    rebind_as: Optional[str] = None


@dataclass(frozen=True)
class Preset:
    """Input hardcoded for a dependency by a host class, used when callers supply none."""

    option: Optional[str]
    values: Mapping[str, Any] = field(default_factory=dict)

    def as_envelope(self) -> dict[str, Any]:
        settings = get_settings()
        return {
            settings.envelope_option_key: self.option,
            settings.envelope_value_key: dict(self.values),
        }


SCALAR = "scalar"
SEQUENCE = "sequence"
MAPPING = "mapping"


@dataclass
class GraphEntry:
    """A realized dependency and the option(s) that produced it.

    ``instance`` and ``option`` share ``shape``: both scalars, both lists in the
    same order, or both dicts with the same keys.
    """

    name: str
    instance: Any
    option: Union[Optional[Option], list, dict]
    shape: str = SCALAR

    def members(self) -> Iterator[tuple[Optional[Any], Any, Optional[Option]]]:
        """Yield ``(key, instance, option)`` for every realized member."""
        if self.shape == SEQUENCE:
            yield from (
                (index, dep, opt)
                for index, (dep, opt) in enumerate(zip(self.instance, self.option))
            )
        elif self.shape == MAPPING:
            for key, dep in self.instance.items():
                yield key, dep, self.option.get(key)
        elif self.instance is not None:
            yield None, self.instance, self.option
