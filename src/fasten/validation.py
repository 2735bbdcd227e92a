"""Collection of validation messages keyed by field name."""

from typing import Iterator

__all__ = ["Errors", "BLANK"]

BLANK = "can't be blank"


class Errors:
    """Validation messages accumulated against field names.

    Example:
        >>> errors = Errors()
        >>> errors.add("datasource.s3_bucket", "can't be blank")
        >>> errors.to_dict()
        {'datasource.s3_bucket': ["can't be blank"]}
    """

    def __init__(self):
        self._messages: dict[str, list[str]] = {}

    def add(self, field: str, message: str):
        messages = self._messages.setdefault(str(field), [])
        if message not in messages:
            messages.append(message)

    def clear(self):
        self._messages.clear()

    def items(self) -> Iterator[tuple[str, str]]:
        """Yield ``(field, message)`` pairs."""
        for field, messages in self._messages.items():
            for message in messages:
                yield field, message

    def to_dict(self) -> dict[str, list[str]]:
        return {field: list(messages) for field, messages in self._messages.items()}

    def __getitem__(self, field: str) -> list[str]:
        return list(self._messages.get(field, []))

    def __contains__(self, field: str) -> bool:
        return field in self._messages

    def __len__(self) -> int:
        return sum(len(messages) for messages in self._messages.values())

    def __bool__(self) -> bool:
        return len(self) > 0

    def __repr__(self):
        return f"Errors({self._messages!r})"
