"""Attribute values attached to spans, metrics and batches.

The New Relic ingest APIs accept strings, numbers and booleans as attribute
values. Numbers are kept with their integer width so that 128-bit values
(wide durations) survive without loss.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from teleship.contracts.enums import AttributeKind

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_UINT64_MAX = 2**64 - 1
_INT128_MIN = -(2**127)
_INT128_MAX = 2**127 - 1
_UINT128_MAX = 2**128 - 1

_INT_RANGES: dict[AttributeKind, tuple[int, int]] = {
    AttributeKind.INT: (_INT64_MIN, _INT64_MAX),
    AttributeKind.UINT: (0, _UINT64_MAX),
    AttributeKind.INT128: (_INT128_MIN, _INT128_MAX),
    AttributeKind.UINT128: (0, _UINT128_MAX),
}


@dataclass(frozen=True, slots=True)
class AttributeValue:
    """A single attribute value with its variant tag.

    Exactly one variant is populated: ``kind`` names it and ``value`` holds
    the Python scalar. Instances are immutable.

    Example:
        >>> AttributeValue.from_python(-3)
        AttributeValue(kind=<AttributeKind.INT: 'int'>, value=-3)
        >>> AttributeValue(AttributeKind.UINT128, 2**100).to_json()
        1267650600228229401496703205376
    """

    kind: AttributeKind
    value: int | float | str | bool

    def __post_init__(self) -> None:
        if self.kind is AttributeKind.BOOL:
            if type(self.value) is not bool:
                raise TypeError(f"bool attribute requires a bool, got {type(self.value).__name__}")
        elif self.kind is AttributeKind.STR:
            if type(self.value) is not str:
                raise TypeError(f"str attribute requires a str, got {type(self.value).__name__}")
        elif self.kind is AttributeKind.FLOAT:
            if type(self.value) is not float:
                raise TypeError(f"float attribute requires a float, got {type(self.value).__name__}")
        else:
            if type(self.value) is not int:
                raise TypeError(f"{self.kind} attribute requires an int, got {type(self.value).__name__}")
            low, high = _INT_RANGES[self.kind]
            if not low <= self.value <= high:
                raise ValueError(f"{self.value} is out of range for {self.kind} attribute")

    @classmethod
    def from_python(cls, value: Any) -> "AttributeValue":
        """Convert a plain Python value to an attribute value.

        Integers take the narrowest kind that holds them, preferring signed
        64-bit, then unsigned 64-bit, then the 128-bit kinds.

        Raises:
            TypeError: If the value is not a str, int, float or bool
            ValueError: If an integer does not fit in 128 bits
        """
        if isinstance(value, AttributeValue):
            return value
        # bool first: bool is a subclass of int
        if isinstance(value, bool):
            return cls(AttributeKind.BOOL, value)
        if isinstance(value, int):
            number = int(value)
            for kind, (low, high) in _INT_RANGES.items():
                if low <= number <= high:
                    return cls(kind, number)
            raise ValueError(f"Integer {number} does not fit in a 128-bit attribute")
        if isinstance(value, float):
            return cls(AttributeKind.FLOAT, float(value))
        if isinstance(value, str):
            return cls(AttributeKind.STR, str(value))
        raise TypeError(f"Unsupported attribute value type: {type(value).__name__}")

    def to_json(self) -> int | float | str | bool:
        """Return the untagged JSON scalar for this value."""
        return self.value


Attributes = dict[str, AttributeValue]


def attributes_to_json(attributes: Mapping[str, AttributeValue]) -> dict[str, Any]:
    """Render an attribute map as a JSON object."""
    return {key: value.to_json() for key, value in attributes.items()}
