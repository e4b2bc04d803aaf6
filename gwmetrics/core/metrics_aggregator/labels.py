"""Label sets and name validation.

A LabelSet identifies one series within a family. It is immutable and
hashable; equality ignores insertion order. Families turn a LabelSet into a
storage key by reading its values in their declared label-name order.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Tuple, Union

from gwmetrics.core.errors import InvalidNameError, LabelMismatchError

METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
LABEL_NAME_RE = METRIC_NAME_RE
RESERVED_LABEL_PREFIX = "__"


def validate_metric_name(name: str) -> str:
    if not isinstance(name, str) or not METRIC_NAME_RE.match(name):
        raise InvalidNameError(f"Invalid metric name: {name!r}")
    return name


def validate_label_name(name: str) -> str:
    if not isinstance(name, str) or not LABEL_NAME_RE.match(name):
        raise InvalidNameError(f"Invalid label name: {name!r}")
    if name.startswith(RESERVED_LABEL_PREFIX):
        raise InvalidNameError(f"Label name {name!r} uses the reserved '__' prefix")
    return name


def validate_label_names(names: Sequence[str]) -> Tuple[str, ...]:
    if isinstance(names, str):
        raise InvalidNameError("label_names must be a sequence of names, not a string")
    result = tuple(validate_label_name(n) for n in names)
    if len(set(result)) != len(result):
        raise InvalidNameError(f"Duplicate label names: {list(result)}")
    return result


class LabelSet(Mapping[str, str]):
    """Immutable label name to value mapping."""

    __slots__ = ("_items", "_hash")

    def __init__(self, labels: Optional[Mapping[str, Any]] = None, **kwargs: Any):
        merged: Dict[str, str] = {}
        if labels:
            merged.update({k: str(v) for k, v in labels.items()})
        merged.update({k: str(v) for k, v in kwargs.items()})
        self._items: Tuple[Tuple[str, str], ...] = tuple(sorted(merged.items()))
        self._hash = hash(self._items)

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

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LabelSet):
            return self._items == other._items
        if isinstance(other, Mapping):
            return dict(self._items) == {k: str(v) for k, v in other.items()}
        return NotImplemented

    def __repr__(self) -> str:
        return f"LabelSet({dict(self._items)!r})"

    def key_for(self, label_names: Sequence[str]) -> Tuple[str, ...]:
        """Return values in ``label_names`` order, checking the key set matches exactly."""
        data = dict(self._items)
        if len(data) != len(label_names) or any(n not in data for n in label_names):
            raise LabelMismatchError(
                f"Label mismatch: expected {sorted(label_names)}, got {sorted(data)}"
            )
        return tuple(data[n] for n in label_names)


LabelsArg = Union[LabelSet, Mapping[str, Any], None]


def as_label_set(labels: LabelsArg) -> LabelSet:
    if isinstance(labels, LabelSet):
        return labels
    if labels is None:
        return LabelSet()
    if not isinstance(labels, Mapping):
        raise LabelMismatchError(f"Labels must be a mapping, got {type(labels).__name__}")
    return LabelSet(labels)


__all__ = [
    "LabelSet",
    "LabelsArg",
    "as_label_set",
    "validate_metric_name",
    "validate_label_name",
    "validate_label_names",
]
