"""
Partial Update Differ - Minimal add/modify/remove sets between two states.

Used for tags, labels and other multi-valued fields so updates issue only
the calls the change needs instead of replacing the whole field.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Set, Tuple


@dataclass
class AttributeDiff:
    """
    Changes that turn an observed mapping into the desired one.

    Attributes:
        to_add: Keys missing from observed, with their desired value.
        to_remove: Keys present in observed but not desired.
        to_modify: Keys present in both with different values, as
            ``key -> (old_value, new_value)``.
    """

    to_add: Dict[str, Any] = field(default_factory=dict)
    to_remove: Set[str] = field(default_factory=set)
    to_modify: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_remove or self.to_modify)

    def changed_keys(self) -> Set[str]:
        return set(self.to_add) | self.to_remove | set(self.to_modify)

    def replace_map(self) -> Dict[str, Any]:
        """Added and modified keys with their new values."""
        replaced = dict(self.to_add)
        replaced.update({key: new for key, (_, new) in self.to_modify.items()})
        return replaced

    def removed_keys(self) -> Set[str]:
        return set(self.to_remove)

    def apply(self, observed: Mapping[str, Any]) -> Dict[str, Any]:
        """Return ``observed`` with this diff applied; the input is untouched."""
        result = copy.deepcopy(dict(observed))
        for key in self.to_remove:
            result.pop(key, None)
        result.update(copy.deepcopy(self.replace_map()))
        return result


def diff(
    desired: Mapping[str, Any],
    observed: Mapping[str, Any],
    unmanaged: Iterable[str] = (),
) -> AttributeDiff:
    """
    Compute the minimal diff from ``observed`` to ``desired``.

    Keys listed in ``unmanaged`` are owned by someone else: they never appear
    in the diff, so applying it leaves them exactly as observed. Values are
    compared structurally, so nested dicts and lists compare by content.

    Args:
        desired: Desired attribute mapping.
        observed: Observed attribute mapping.
        unmanaged: Keys this reconciliation has no authority over.

    Returns:
        An AttributeDiff; empty when nothing needs to change.
    """
    ignored = _as_set(unmanaged)
    result = AttributeDiff()

    for key, value in desired.items():
        if key in ignored:
            continue
        if key not in observed:
            result.to_add[key] = copy.deepcopy(value)
        elif not _equal(observed[key], value):
            result.to_modify[key] = (copy.deepcopy(observed[key]), copy.deepcopy(value))

    for key in observed:
        if key not in desired and key not in ignored:
            result.to_remove.add(key)

    return result


@dataclass
class UpdatePlan:
    """
    Everything an update must change.

    Attributes:
        attributes: Diff of scalar attributes.
        fields: One diff per multi-valued field (e.g. ``"tags"``).
    """

    attributes: AttributeDiff = field(default_factory=AttributeDiff)
    fields: Dict[str, AttributeDiff] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.attributes.is_empty and all(d.is_empty for d in self.fields.values())

    def for_field(self, name: str) -> AttributeDiff:
        return self.fields.get(name, AttributeDiff())

    def describe(self) -> str:
        """Short human readable summary used in logs and drift reports."""
        parts = []
        if not self.attributes.is_empty:
            parts.append(f"attributes: {sorted(self.attributes.changed_keys())}")
        for name, field_diff in sorted(self.fields.items()):
            if not field_diff.is_empty:
                parts.append(f"{name}: {sorted(field_diff.changed_keys())}")
        return "; ".join(parts) or "no changes"


def _as_set(keys: Iterable[str]) -> Set[str]:
    if isinstance(keys, (set, frozenset)):
        return set(keys)
    if isinstance(keys, str):
        return {keys}
    return set(keys)


def _equal(left: Any, right: Any) -> bool:
    # bool is an int subclass; True must not equal 1 for attribute values
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if set(left) != set(right):
            return False
        return all(_equal(left[k], right[k]) for k in left)
    if _is_sequence(left) and _is_sequence(right):
        if len(left) != len(right):
            return False
        return all(_equal(a, b) for a, b in zip(left, right))
    return left == right


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))

