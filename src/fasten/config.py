"""Library-wide settings.

Resolution order (highest priority first):
1. Programmatic (``configure(FastenSettings(...))``)
2. Environment variables (``FASTEN_TYPE_TAG_KEY`` etc.)
3. Hardcoded defaults
"""

import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

logger = logging.getLogger(__name__)

__all__ = ["FastenSettings", "get_settings", "configure"]


@dataclass(frozen=True)
class FastenSettings:
    """Tunable names used by resolution and serialization.

    Attributes:
        type_tag_key: Key marking a type-tagged scalar in serialized output.
        type_value_key: Key holding the encoded scalar next to ``type_tag_key``.
        envelope_option_key: Key naming the option in an explicit option envelope.
        envelope_value_key: Key holding the constructor input in an explicit option envelope.
        reserved_attributes: Names that may never be bound into a dependency.
        configuration_column: Column holding the serialized service of a persisted model.
    """

    type_tag_key: str = "__type__"
    type_value_key: str = "value"
    envelope_option_key: str = "option_name"
    envelope_value_key: str = "value"
    reserved_attributes: FrozenSet[str] = field(default_factory=lambda: frozenset({"id"}))
    configuration_column: str = "configuration"

    @classmethod
    def load(cls) -> "FastenSettings":
        """Build settings from defaults overlaid with environment variables."""
        overrides = {}
        if val := os.environ.get("FASTEN_TYPE_TAG_KEY"):
            overrides["type_tag_key"] = val
        if val := os.environ.get("FASTEN_CONFIGURATION_COLUMN"):
            if val.isidentifier():
                overrides["configuration_column"] = val
            else:
                logger.warning("Invalid FASTEN_CONFIGURATION_COLUMN=%r, ignoring", val)
        if val := os.environ.get("FASTEN_RESERVED_ATTRIBUTES"):
            overrides["reserved_attributes"] = frozenset(
                name.strip() for name in val.split(",") if name.strip()
            )
        return cls(**overrides)


_settings: Optional[FastenSettings] = None


def get_settings() -> FastenSettings:
    global _settings
    if _settings is None:
        _settings = FastenSettings.load()
    return _settings


def configure(settings: Optional[FastenSettings]) -> None:
    """Install ``settings`` for the process; ``None`` reloads from the environment on next use."""
    global _settings
    _settings = settings
