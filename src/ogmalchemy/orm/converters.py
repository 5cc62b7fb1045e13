# src/ogmalchemy/orm/converters.py
"""
ogmalchemy property converters.

The database stores numbers, booleans, text and homogeneous lists of these.
Richer field types go through a converter registered per field; the metadata
registry picks a built-in converter for ``datetime``, ``date``, ``Enum``,
``Decimal`` and ``UUID`` fields (and lists of them) when none is declared.

``None`` never reaches a converter: a missing value is stored as a missing
property.
"""
import json
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, List, Optional, Type, TypeVar
from uuid import UUID

T = TypeVar('T')


class Converter(ABC, Generic[T]):
    """Translates one field value to and from its wire representation."""

    @abstractmethod
    def to_persisted(self, value: T) -> Any:
        """Convert a field value to a wire value."""

    @abstractmethod
    def from_persisted(self, value: Any) -> T:
        """Convert a wire value back to a field value."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class DateTimeConverter(Converter[datetime]):
    """Stores datetimes as ISO-8601 text, which sorts chronologically."""

    def to_persisted(self, value: datetime) -> str:
        return value.isoformat()

    def from_persisted(self, value: Any) -> datetime:
        if hasattr(value, 'to_native'):
            # neo4j.time.DateTime written by another client
            return value.to_native()
        if isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid datetime value {value!r}") from exc


class DateConverter(Converter[date]):
    """Stores dates as ISO-8601 text (YYYY-MM-DD)."""

    def to_persisted(self, value: date) -> str:
        if isinstance(value, datetime):
            value = value.date()
        return value.isoformat()

    def from_persisted(self, value: Any) -> date:
        if hasattr(value, 'to_native'):
            value = value.to_native()
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid date value {value!r}") from exc


class EnumConverter(Converter[Enum]):
    """
    Stores enum members by value (default) or by name.

    Args:
        enum_class: Enum type of the field
        by_name: Store ``member.name`` instead of ``member.value``
    """

    def __init__(self, enum_class: Type[Enum], *, by_name: bool = False):
        self.enum_class = enum_class
        self.by_name = by_name

    def to_persisted(self, value: Enum) -> Any:
        member = value if isinstance(value, self.enum_class) else self.enum_class(value)
        return member.name if self.by_name else member.value

    def from_persisted(self, value: Any) -> Enum:
        if self.by_name:
            try:
                return self.enum_class[value]
            except KeyError as exc:
                raise ValueError(f"{value!r} is not a member of {self.enum_class.__name__}") from exc
        return self.enum_class(value)

    def __repr__(self) -> str:
        return f"EnumConverter({self.enum_class.__name__}, by_name={self.by_name})"


class DecimalConverter(Converter[Decimal]):
    """Stores decimals as text so no precision is lost."""

    def to_persisted(self, value: Decimal) -> str:
        return str(value)

    def from_persisted(self, value: Any) -> Decimal:
        return Decimal(str(value))


class UUIDConverter(Converter[UUID]):
    """Stores UUIDs in their canonical text form."""

    def to_persisted(self, value: UUID) -> str:
        return str(value)

    def from_persisted(self, value: Any) -> UUID:
        return value if isinstance(value, UUID) else UUID(str(value))


class JsonConverter(Converter[Any]):
    """Stores maps and other JSON-compatible values as JSON text."""

    def to_persisted(self, value: Any) -> str:
        return json.dumps(value, sort_keys=True)

    def from_persisted(self, value: Any) -> Any:
        return json.loads(value)


class ListConverter(Converter[List[Any]]):
    """Applies an item converter to every element of a list field."""

    def __init__(self, item_converter: Converter):
        self.item_converter = item_converter

    def to_persisted(self, value: List[Any]) -> List[Any]:
        return [self.item_converter.to_persisted(item) for item in value]

    def from_persisted(self, value: Any) -> List[Any]:
        return [self.item_converter.from_persisted(item) for item in value]

    def __repr__(self) -> str:
        return f"ListConverter({self.item_converter!r})"


def default_converter(annotation: Any) -> Optional[Converter]:
    """Built-in converter for a scalar annotation, or None when none applies."""
    if not isinstance(annotation, type):
        return None
    # datetime is a date subclass; check it first
    if issubclass(annotation, datetime):
        return DateTimeConverter()
    if issubclass(annotation, date):
        return DateConverter()
    if issubclass(annotation, Enum):
        return EnumConverter(annotation)
    if issubclass(annotation, Decimal):
        return DecimalConverter()
    if issubclass(annotation, UUID):
        return UUIDConverter()
    return None
