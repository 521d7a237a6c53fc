"""
Value tree produced by the decoder.

A Value is a closed tagged union: one frozen dataclass per supported
data type. Composite values hold tuples so a decoded tree cannot be
mutated after it is built.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple


UINT16_MAX = (1 << 16) - 1
UINT32_MAX = (1 << 32) - 1
UINT64_MAX = (1 << 64) - 1
INT32_MIN = -(1 << 31)
INT32_MAX = (1 << 31) - 1


class Value(ABC):
    """Abstract base class for decoded values."""

    @abstractmethod
    def to_python(self) -> Any:
        """
        Convert to plain Python data.

        Maps become dicts, arrays become lists, scalars become
        str, int, float, bool or None.
        """
        pass

    @property
    def type_name(self) -> str:
        """Name of the variant, e.g. "UInt32"."""
        return type(self).__name__


@dataclass(frozen=True)
class Null(Value):
    def to_python(self) -> Any:
        return None


@dataclass(frozen=True)
class Bool(Value):
    value: bool

    def to_python(self) -> Any:
        return self.value


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if not low <= value <= high:
        raise ValueError(f"{name} value {value} out of range [{low}, {high}]")


@dataclass(frozen=True)
class Int32(Value):
    value: int

    def __post_init__(self):
        _check_range("Int32", self.value, INT32_MIN, INT32_MAX)

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class UInt16(Value):
    value: int

    def __post_init__(self):
        _check_range("UInt16", self.value, 0, UINT16_MAX)

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class UInt32(Value):
    value: int

    def __post_init__(self):
        _check_range("UInt32", self.value, 0, UINT32_MAX)

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class UInt64(Value):
    value: int

    def __post_init__(self):
        _check_range("UInt64", self.value, 0, UINT64_MAX)

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Double(Value):
    value: float

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class String(Value):
    value: str

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Array(Value):
    """An ordered sequence of values."""
    items: Tuple[Value, ...] = ()

    def __post_init__(self):
        # Accept any iterable but always store a tuple
        object.__setattr__(self, "items", tuple(self.items))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Value]:
        return iter(self.items)

    def __getitem__(self, index: int) -> Value:
        return self.items[index]

    def to_python(self) -> Any:
        return [item.to_python() for item in self.items]


@dataclass(frozen=True)
class Map(Value):
    """
    An order-preserving mapping from string keys to values.

    Keys are unique. Constructing a Map from pairs with a repeated key
    keeps the last value, at the position where the key first appeared.
    """
    pairs: Tuple[Tuple[str, Value], ...] = ()
    _index: Dict[str, Value] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        index: Dict[str, Value] = {}
        for key, value in self.pairs:
            if not isinstance(key, str):
                raise TypeError(f"Map keys must be str, got {type(key).__name__}")
            index[key] = value
        object.__setattr__(self, "pairs", tuple(index.items()))
        object.__setattr__(self, "_index", index)

    def __len__(self) -> int:
        return len(self.pairs)

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __getitem__(self, key: str) -> Value:
        return self._index[key]

    def get(self, key: str, default: Optional[Value] = None) -> Optional[Value]:
        return self._index.get(key, default)

    def keys(self):
        return self._index.keys()

    def values(self):
        return self._index.values()

    def items(self):
        return self._index.items()

    def to_python(self) -> Any:
        return {key: value.to_python() for key, value in self.pairs}


def to_value(obj: Any) -> Value:
    """
    Convert plain Python data into a Value tree.

    Integers map to UInt32 when they fit, UInt64 when larger, and Int32
    when negative. Values that are already a Value are returned as-is.

    Args:
        obj: dict/list/tuple/str/int/float/bool/None or a Value

    Returns:
        The equivalent Value
    """
    if isinstance(obj, Value):
        return obj
    if obj is None:
        return Null()
    # bool is a subclass of int, check it first
    if isinstance(obj, bool):
        return Bool(obj)
    if isinstance(obj, int):
        if obj < 0:
            return Int32(obj)
        if obj <= UINT32_MAX:
            return UInt32(obj)
        return UInt64(obj)
    if isinstance(obj, float):
        return Double(obj)
    if isinstance(obj, str):
        return String(obj)
    if isinstance(obj, dict):
        return Map(tuple((key, to_value(value)) for key, value in obj.items()))
    if isinstance(obj, (list, tuple)):
        return Array(tuple(to_value(item) for item in obj))
    raise TypeError(f"Cannot convert {type(obj).__name__} to a Value")
