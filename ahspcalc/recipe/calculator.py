"""Recipe arithmetic.

Pure functions shared by the recompute propagator, the component mutations
and the read path. All amounts are Decimal; nothing here rounds.

    A = sum(LABOR subtotals)
    B = sum(MATERIAL subtotals)
    C = sum(EQUIPMENT subtotals)
    X = sum(OTHER subtotals)       tracked, not part of D
    D = A + B + C
    E = D * overhead_percent / 100
    F = D + E
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from ahspcalc.core.errors import ValidationError
from ahspcalc.models import ComponentGroup, PricePolicy

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class RecipeTotals:
    A: Decimal
    B: Decimal
    C: Decimal
    X: Decimal
    D: Decimal
    E: Decimal
    F: Decimal

    @property
    def subtotal_abc(self) -> Decimal:
        return self.D

    @property
    def overhead_amount(self) -> Decimal:
        return self.E

    @property
    def final_unit_price(self) -> Decimal:
        return self.F


def to_decimal(value: Any, field: str) -> Decimal:
    """Coerce user input to a finite Decimal or raise ValidationError."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"{field} must be a finite number")
        result = Decimal(str(value))
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number") from None
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def non_negative(value: Any, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result < 0:
        raise ValidationError(f"{field} must be >= 0")
    return result


def parse_group(value: Any) -> ComponentGroup:
    try:
        return ComponentGroup(value)
    except ValueError:
        raise ValidationError("group must be LABOR|MATERIAL|EQUIPMENT|OTHER") from None


def effective_unit_price(price_override: Decimal | None, master_price: Decimal) -> Decimal:
    """Current-price mode: an override (including 0) always wins."""
    return master_price if price_override is None else price_override


def component_subtotal(coefficient: Decimal, unit_price: Decimal) -> Decimal:
    return coefficient * unit_price


def resolve_unit_price(
    policy: PricePolicy,
    price_override: Decimal | None,
    master_price: Decimal | None,
    snapshot_price: Decimal | None,
) -> Decimal:
    """Read-path price resolution; the two policies intentionally differ."""
    if policy is PricePolicy.SNAPSHOT:
        candidates = (price_override, snapshot_price, master_price)
    else:
        candidates = (price_override, master_price, snapshot_price)
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return ZERO


def compute_totals(
    lines: Iterable[tuple[ComponentGroup, Decimal]],
    overhead_percent: Decimal,
) -> RecipeTotals:
    """Aggregate (group, subtotal) pairs into recipe totals."""
    buckets = {group: ZERO for group in ComponentGroup}
    for group, subtotal in lines:
        buckets[group] += subtotal

    a = buckets[ComponentGroup.LABOR]
    b = buckets[ComponentGroup.MATERIAL]
    c = buckets[ComponentGroup.EQUIPMENT]
    d = a + b + c
    e = d * (overhead_percent / HUNDRED)
    return RecipeTotals(
        A=a,
        B=b,
        C=c,
        X=buckets[ComponentGroup.OTHER],
        D=d,
        E=e,
        F=d + e,
    )
