from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Mapping, TypeVar

from csl.domain.errors import ValidationError

T = TypeVar("T")


def now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


def replace_by_id(items: Iterable[T], updated: T) -> tuple[T, ...]:
    return tuple(updated if item.id == updated.id else item for item in items)


def remove_by_id(items: Iterable[T], item_id) -> tuple[T, ...]:
    return tuple(item for item in items if item.id != item_id)


def patch(entity: T, data: Mapping[str, Any], editable: Iterable[str]) -> T:
    allowed = set(editable)
    unknown = set(data) - allowed
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    return replace(entity, **dict(data))


def money(value: Any, label: str, allow_zero: bool = True) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be a number.") from e
    if not math.isfinite(amount):
        raise ValidationError(f"{label} must be a number.")
    if amount < 0 or (not allow_zero and amount == 0):
        raise ValidationError(f"{label} must be {'>= 0' if allow_zero else '> 0'}.")
    return amount


def whole(value: Any, label: str, minimum: int = 1) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be a whole number.") from e
    if not number.is_integer():
        raise ValidationError(f"{label} must be a whole number.")
    if number < minimum:
        raise ValidationError(f"{label} must be >= {minimum}.")
    return int(number)
