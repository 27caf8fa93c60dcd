"""Master price catalog.

Canonical labor/material/equipment/other units with a current price. A user
scope may shadow a GLOBAL row with the same code; listings merge the two with
the user's row winning.
"""

from __future__ import annotations

import logging
import random
import string
from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ahspcalc.catalog.validation import (
    clamp_skip,
    clamp_take,
    contains_ci,
    optional_text,
    order_direction,
    required_text,
)
from ahspcalc.config import AppConfig, get_config
from ahspcalc.core.errors import ConflictError, NotFoundError, ValidationError
from ahspcalc.core.scope import GLOBAL, Scope, merge_override
from ahspcalc.db.connection import session_scope
from ahspcalc.db.models import MasterItemModel
from ahspcalc.models import MasterItemDetail, MasterItemType, Page
from ahspcalc.recipe import repository
from ahspcalc.recipe.calculator import non_negative, to_decimal
from ahspcalc.recipe.recompute import RecomputePropagator

logger = logging.getLogger(__name__)

CODE_PREFIX = {
    MasterItemType.LABOR: "LAB",
    MasterItemType.MATERIAL: "MAT",
    MasterItemType.EQUIPMENT: "EQP",
    MasterItemType.OTHER: "OTH",
}
_CODE_ALPHABET = string.digits + string.ascii_uppercase
_SORT_FIELDS = ("code", "name", "price")
_UPDATABLE = frozenset(
    {"code", "name", "unit", "price", "type", "hourly_rate", "daily_rate", "notes"}
)


def parse_type(value: Any) -> MasterItemType:
    try:
        return MasterItemType(value)
    except ValueError:
        raise ValidationError("type must be LABOR|MATERIAL|EQUIPMENT|OTHER") from None


def auto_code(item_type: MasterItemType) -> str:
    """``{PREFIX}-{6 random base36 characters}``, e.g. ``MAT-0K3ZQ9``."""
    suffix = "".join(random.choices(_CODE_ALPHABET, k=6))
    return f"{CODE_PREFIX[item_type]}-{suffix}"


def _optional_rate(value: Any, field: str) -> Decimal | None:
    """A rate that is not a finite number counts as not given; negative rates are rejected."""
    if value is None:
        return None
    try:
        rate = to_decimal(value, field)
    except ValidationError:
        return None
    return non_negative(rate, field)


def initial_price(
    item_type: MasterItemType,
    price: Any,
    hourly_rate: Decimal | None,
    daily_rate: Decimal | None,
) -> Decimal:
    """LABOR: daily rate, then hourly rate, then price. Others: price."""
    if item_type is MasterItemType.LABOR:
        if daily_rate is not None:
            return daily_rate
        if hourly_rate is not None:
            return hourly_rate
    if price is None:
        raise ValidationError(
            "price must be a non-negative number (or provide daily_rate/hourly_rate for LABOR)"
        )
    return non_negative(price, "price")


def to_detail(item: MasterItemModel, references: int = 0) -> MasterItemDetail:
    return MasterItemDetail(
        id=item.id,
        scope=item.scope.tag,
        code=item.code,
        name=item.name,
        unit=item.unit,
        price=item.price,
        type=MasterItemType(item.type),
        hourly_rate=item.hourly_rate,
        daily_rate=item.daily_rate,
        notes=item.notes,
        updated_at=item.updated_at,
        references=references,
    )


class MasterCatalog:
    """CRUD and listing over master items, plus price-change propagation."""

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        propagator: RecomputePropagator | None = None,
        config: AppConfig | None = None,
    ):
        self.session_factory = session_factory
        self.propagator = propagator or RecomputePropagator(session_factory)
        self.config = config

    @property
    def page_max(self) -> int:
        config = self.config or get_config()
        return config.pricing.master_page_max

    async def list_by_type(
        self,
        scope: Scope,
        item_type: Any,
        q: str | None = None,
        skip: int | None = 0,
        take: int | None = 20,
        order_by: str | None = "code",
        order_dir: str | None = "asc",
    ) -> Page[MasterItemModel]:
        """List one type, the caller's rows merged over GLOBAL by code."""
        parsed = parse_type(item_type)
        skip = clamp_skip(skip)
        take = clamp_take(take, 20, self.page_max)
        sort_field = order_by if order_by in _SORT_FIELDS else "code"

        async with session_scope(self.session_factory) as session:
            stmt = select(MasterItemModel).where(
                MasterItemModel.type == parsed.value,
                MasterItemModel.scope.in_([scope, GLOBAL]),
            )
            result = await session.execute(stmt)
            rows = list(result.scalars().all())

        merged = merge_override(
            [row for row in rows if row.scope == scope and not scope.is_global],
            [row for row in rows if row.scope == GLOBAL],
            key_of=lambda row: row.code,
        )
        if q:
            merged = [row for row in merged if contains_ci(q, row.code, row.name, row.unit)]

        merged.sort(key=lambda row: row.code)
        merged.sort(key=lambda row: getattr(row, sort_field), reverse=order_direction(order_dir))

        return Page(items=merged[skip:skip + take], skip=skip, take=take, total=len(merged))

    async def get(self, master_item_id: UUID) -> MasterItemDetail:
        async with session_scope(self.session_factory) as session:
            item = await repository.get_master_item(session, master_item_id)
            if item is None:
                raise NotFoundError(f"Master item not found: {master_item_id}")
            references = await repository.count_components_using_master(session, item.id)
            return to_detail(item, references)

    async def create(
        self,
        scope: Scope,
        *,
        name: Any,
        unit: Any,
        type: Any,
        code: Any = None,
        price: Any = None,
        hourly_rate: Any = None,
        daily_rate: Any = None,
        notes: Any = None,
    ) -> MasterItemModel:
        """Create a master item in ``scope``.

        LABOR items need an explicit code; other types get one generated when
        it is blank.

        Raises:
            ValidationError: Missing name/unit, bad type, or bad price
            ConflictError: Code already used in this scope
        """
        clean_name = required_text(name, "name")
        clean_unit = required_text(unit, "unit")
        item_type = parse_type(type)

        if isinstance(code, str) and code.strip():
            clean_code = required_text(code, "code")
        elif item_type is MasterItemType.LABOR:
            raise ValidationError("code is required for LABOR")
        else:
            clean_code = auto_code(item_type)

        hourly = _optional_rate(hourly_rate, "hourly_rate")
        daily = _optional_rate(daily_rate, "daily_rate")
        item_price = initial_price(item_type, price, hourly, daily)

        item = MasterItemModel(
            scope=scope,
            code=clean_code,
            name=clean_name,
            unit=clean_unit,
            price=item_price,
            type=item_type.value,
            hourly_rate=hourly,
            daily_rate=daily,
            notes=optional_text(notes),
        )
        async with session_scope(self.session_factory) as session:
            session.add(item)
            await session.flush()
            await session.refresh(item)

        logger.info(f"Created master item {item.code} ({item.type}) in {scope} at {item.price}")
        return item

    async def update(
        self,
        master_item_id: UUID,
        fields: Mapping[str, Any],
        recompute: bool = False,
    ) -> MasterItemModel:
        """Apply a partial update; only supplied fields are validated and written.

        For a stored LABOR item a supplied daily_rate drives price unless price
        is also supplied; hourly_rate drives price only when neither daily_rate
        nor price is supplied. With ``recompute`` every recipe using the item
        is recomputed after the update commits.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValidationError(f"Unknown master item fields: {sorted(unknown)}")

        payload: dict[str, Any] = {}
        if "code" in fields:
            payload["code"] = required_text(fields["code"], "code")
        if "name" in fields:
            payload["name"] = required_text(fields["name"], "name")
        if "unit" in fields:
            payload["unit"] = required_text(fields["unit"], "unit")
        if "price" in fields:
            payload["price"] = non_negative(fields["price"], "price")
        if "type" in fields:
            payload["type"] = parse_type(fields["type"]).value
        if "hourly_rate" in fields:
            payload["hourly_rate"] = _optional_rate(fields["hourly_rate"], "hourly_rate")
        if "daily_rate" in fields:
            payload["daily_rate"] = _optional_rate(fields["daily_rate"], "daily_rate")
        if "notes" in fields:
            payload["notes"] = optional_text(fields["notes"])

        async with session_scope(self.session_factory) as session:
            item = await repository.get_master_item(session, master_item_id)
            if item is None:
                raise NotFoundError(f"Master item not found: {master_item_id}")

            if item.type == MasterItemType.LABOR.value and "price" not in fields:
                if "daily_rate" in fields:
                    if payload["daily_rate"] is not None:
                        payload["price"] = payload["daily_rate"]
                elif payload.get("hourly_rate") is not None:
                    payload["price"] = payload["hourly_rate"]

            for name, value in payload.items():
                setattr(item, name, value)
            await session.flush()
            await session.refresh(item)

        logger.info(f"Updated master item {item.code}: {sorted(payload)}")

        if recompute:
            report = await self.propagator.recompute_master_item(item.id)
            if not report.ok:
                logger.warning(
                    f"Recompute after update of {item.code} left {len(report.failed)} "
                    f"recipes stale"
                )
        return item

    async def delete(self, master_item_id: UUID) -> None:
        """Delete an unreferenced master item. Never cascades to components."""
        async with session_scope(self.session_factory) as session:
            item = await repository.get_master_item(session, master_item_id)
            if item is None:
                raise NotFoundError(f"Master item not found: {master_item_id}")

            references = await repository.count_components_using_master(session, item.id)
            if references > 0:
                raise ConflictError(
                    f"Cannot delete: item is referenced by AHSP components ({references})"
                )
            await session.delete(item)

        logger.info(f"Deleted master item {master_item_id}")
