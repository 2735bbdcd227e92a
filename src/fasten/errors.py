"""Exceptions raised while defining, resolving and serializing dependencies."""

__all__ = [
    "DependencyError",
    "DefinitionError",
    "ClassLookupError",
    "ResolutionError",
    "UnknownOptionError",
    "ReservedAttributeError",
    "UnknownAttributeError",
    "SerializationError",
]


class DependencyError(Exception):
    """Base class for every error raised by fasten."""

    pass


class DefinitionError(DependencyError):
    """Raised at class-definition time when a dependency is misconfigured.

    Examples are two options both marked as the default, or a factory whose
    dependencies cannot be matched to the component that delegates to it.
    """

    pass


class ClassLookupError(DefinitionError):
    """Raised when ``set_class`` names a class that was never registered."""

    pass


class ResolutionError(DependencyError):
    """Raised when raw input cannot be turned into a dependency instance."""

    pass


class UnknownOptionError(ResolutionError):
    """Raised when input names an option the dependency does not declare."""

    pass


class ReservedAttributeError(ResolutionError):
    """Raised when a reserved name such as ``id`` would be bound into a dependency."""

    pass


class UnknownAttributeError(DependencyError, AttributeError):
    """Raised when assigning a name the attribute store does not declare."""

    pass


class SerializationError(DependencyError):
    """Raised when a dependency instance matches none of its declared options."""

    pass
