"""Immutable label sets used as time series identities."""
import re
from collections.abc import Mapping
from typing import Dict, Iterator, Optional, Tuple

_LABEL_NAME_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_.]*$')


def validate_label_names(labels: Mapping) -> bool:
    """
    Validate label names are exporter-safe.

    Label names must match [a-zA-Z_][a-zA-Z0-9_.]*
    """
    for name in labels.keys():
        if not isinstance(name, str) or not _LABEL_NAME_PATTERN.match(name):
            return False
    return True


class LabelSet(Mapping):
    """
    Immutable string-to-string mapping with value identity.

    Two label sets with the same keys and values are equal and hash the same,
    regardless of the order in which they were built.
    """

    __slots__ = ("_items", "_hash")

    def __init__(self, labels: Optional[Mapping] = None):
        items = dict(labels or {})
        for key, value in items.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise TypeError(
                    f"Label keys and values must be strings, got {key!r}={value!r}"
                )
        self._items: Tuple[Tuple[str, str], ...] = tuple(sorted(items.items()))
        self._hash = hash(self._items)

    @classmethod
    def create(cls, *key_values: str) -> "LabelSet":
        """Build a label set from alternating keys and values."""
        if len(key_values) % 2 != 0:
            raise ValueError("Label keys and values must come in pairs")
        pairs = zip(key_values[0::2], key_values[1::2])
        return cls(dict(pairs))

    @classmethod
    def of(cls, labels) -> "LabelSet":
        """Return ``labels`` itself when it is already a LabelSet."""
        if isinstance(labels, LabelSet):
            return labels
        return cls(labels)

    def __getitem__(self, key: str) -> str:
        for k, v in self._items:
            if k == key:
                return v
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return (k for k, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other) -> bool:
        if isinstance(other, LabelSet):
            return self._items == other._items
        if isinstance(other, Mapping):
            return dict(self._items) == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"LabelSet({dict(self._items)!r})"

    def to_dict(self) -> Dict[str, str]:
        return dict(self._items)

    def label_key(self) -> str:
        """Generate a stable key from sorted labels."""
        return ",".join(f"{k}={v}" for k, v in self._items)


EMPTY = LabelSet()
