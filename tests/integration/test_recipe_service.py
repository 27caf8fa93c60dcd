"""Integration tests for recipe edits and the breakdown read path."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from ahspcalc.core.errors import NotFoundError, ValidationError
from ahspcalc.core.scope import GLOBAL, UserScope
from ahspcalc.models import ComponentGroup, GroupLabel, PricePolicy

U1 = UserScope("u1")


@pytest_asyncio.fixture()
async def masters(seed):
    return {
        "labor": await seed.master("LAB-01", Decimal("100000"), type="LABOR", name="Pekerja", unit="OH"),
        "mandor": await seed.master("LAB-02", Decimal("150000"), type="LABOR", name="Mandor", unit="OH"),
        "material": await seed.master("MAT-01", Decimal("80000"), name="Semen", unit="zak"),
        "equipment": await seed.master("EQP-01", Decimal("500000"), type="EQUIPMENT", name="Molen", unit="hari"),
    }


@pytest_asyncio.fixture()
async def item_a1(seed):
    category = await seed.category("PERSIAPAN")
    return await seed.item("A.1", category.id)


@pytest.mark.asyncio
async def test_user_add_lands_on_private_copy(recipes, masters, item_a1):
    """GLOBAL A.1 has 3 lines; u1 adds one and sees 4 while GLOBAL keeps 3."""
    for key in ("labor", "mandor", "material"):
        master = masters[key]
        await recipes.add_component_by_kode(GLOBAL, "A.1", master.type, master.id, coefficient="0.1")

    await recipes.add_component_by_kode(U1, "A.1", "EQUIPMENT", masters["equipment"].id, coefficient="0.01")

    mine = await recipes.get_breakdown_by_kode(U1, "A.1")
    shared = await recipes.get_breakdown_by_kode(GLOBAL, "A.1")

    def line_count(breakdown):
        return sum(len(group.items) for group in breakdown.recipe.groups.values())

    assert mine.scope == "u:u1"
    assert line_count(mine) == 4
    assert shared.scope == "GLOBAL"
    assert line_count(shared) == 3
    assert shared.recipe.groups[ComponentGroup.EQUIPMENT].items == []


@pytest.mark.asyncio
async def test_lines_ordered_last_within_group(recipes, masters, item_a1):
    first = await recipes.add_component_by_kode(GLOBAL, "A.1", "LABOR", masters["labor"].id)
    material = await recipes.add_component_by_kode(GLOBAL, "A.1", "MATERIAL", masters["material"].id)
    second = await recipes.add_component_by_kode(GLOBAL, "A.1", "LABOR", masters["mandor"].id)

    assert (first.order, second.order, material.order) == (1, 2, 1)

    breakdown = await recipes.get_breakdown_by_kode(GLOBAL, "A.1")
    labor = breakdown.recipe.groups[ComponentGroup.LABOR]
    assert [line.master_item_id for line in labor.items] == [masters["labor"].id, masters["mandor"].id]
    assert labor.label is GroupLabel.A


@pytest.mark.asyncio
async def test_add_snapshots_master_and_defaults(recipes, app_config, masters, item_a1):
    component = await recipes.add_component_by_kode(
        GLOBAL, "A.1", "MATERIAL", masters["material"].id, notes="  ex gudang  "
    )

    assert component.coefficient == Decimal("1")
    assert component.price_override is None
    assert component.name_snapshot == "Semen"
    assert component.unit_snapshot == "zak"
    assert component.unit_price_snapshot == Decimal("80000")
    assert component.effective_unit_price == Decimal("80000")
    assert component.subtotal == Decimal("80000")
    assert component.notes == "ex gudang"

    breakdown = await recipes.get_breakdown_by_kode(GLOBAL, "A.1")
    assert breakdown.recipe.overhead_percent == app_config.pricing.default_overhead_percent


@pytest.mark.asyncio
async def test_zero_override_is_honoured(recipes, masters, item_a1):
    component = await recipes.add_component_by_kode(
        GLOBAL, "A.1", "MATERIAL", masters["material"].id, coefficient="3", price_override="0"
    )

    assert component.price_override == Decimal("0")
    assert component.effective_unit_price == Decimal("0")
    assert component.subtotal == Decimal("0")

    breakdown = await recipes.get_breakdown_by_kode(GLOBAL, "A.1")
    assert breakdown.recipe.computed.B == Decimal("0")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"group": "TOOLS"},
        {"coefficient": "-1"},
        {"coefficient": "abc"},
        {"price_override": "-5"},
    ],
)
async def test_add_validation_happens_before_writes(recipes, masters, item_a1, kwargs):
    params = {"group": "MATERIAL", **kwargs}

    with pytest.raises(ValidationError):
        await recipes.add_component_by_kode(U1, "A.1", master_item_id=masters["material"].id, **params)

    # No private copy was created
    breakdown = await recipes.get_breakdown_by_kode(U1, "A.1")
    assert breakdown.scope == "GLOBAL"


@pytest.mark.asyncio
async def test_add_with_unknown_master_rolls_back_copy(recipes, item_a1):
    with pytest.raises(NotFoundError, match="Master item not found"):
        await recipes.add_component_by_kode(U1, "A.1", "MATERIAL", uuid4())

    breakdown = await recipes.get_breakdown_by_kode(U1, "A.1")
    assert breakdown.scope == "GLOBAL"


@pytest.mark.asyncio
async def test_add_to_unknown_item(recipes, masters):
    with pytest.raises(NotFoundError):
        await recipes.add_component_by_kode(GLOBAL, "Z.9", "MATERIAL", masters["material"].id)


@pytest.mark.asyncio
async def test_update_component_rederives_line(recipes, masters, item_a1):
    component = await recipes.add_component_by_kode(GLOBAL, "A.1", "LABOR", masters["labor"].id)

    updated = await recipes.update_component(
        component.id, {"coefficient": "2.5", "price_override": "90000", "notes": " lembur "}
    )
    assert updated.effective_unit_price == Decimal("90000")
    assert updated.subtotal == Decimal("225000")
    assert updated.notes == "lembur"

    cleared = await recipes.update_component(component.id, {"price_override": None})
    assert cleared.price_override is None
    assert cleared.effective_unit_price == Decimal("100000")
    assert cleared.subtotal == Decimal("250000")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields",
    [{"coefficient": None}, {"coefficient": "-0.1"}, {"order": -1}, {"order": True}, {"group": "LABOR"}],
)
async def test_update_component_rejects_bad_fields(recipes, masters, item_a1, fields):
    component = await recipes.add_component_by_kode(GLOBAL, "A.1", "LABOR", masters["labor"].id)

    with pytest.raises(ValidationError):
        await recipes.update_component(component.id, fields)


@pytest.mark.asyncio
async def test_component_mutations_on_missing_id(recipes):
    with pytest.raises(NotFoundError):
        await recipes.update_component(uuid4(), {"coefficient": 1})
    with pytest.raises(NotFoundError):
        await recipes.delete_component(uuid4())


@pytest.mark.asyncio
async def test_delete_component(recipes, masters, item_a1):
    keep = await recipes.add_component_by_kode(GLOBAL, "A.1", "LABOR", masters["labor"].id)
    drop = await recipes.add_component_by_kode(GLOBAL, "A.1", "LABOR", masters["mandor"].id)

    await recipes.delete_component(drop.id)

    breakdown = await recipes.get_breakdown_by_kode(GLOBAL, "A.1")
    assert [line.id for line in breakdown.recipe.groups[ComponentGroup.LABOR].items] == [keep.id]


@pytest.mark.asyncio
async def test_set_overhead_creates_bare_recipe(recipes, item_a1):
    recipe = await recipes.set_overhead_by_kode(U1, "A.1", "15")

    assert recipe.overhead_percent == Decimal("15")
    assert recipe.final_unit_price == Decimal("0")

    breakdown = await recipes.get_breakdown_by_kode(U1, "A.1")
    assert breakdown.scope == "u:u1"
    assert breakdown.recipe.overhead_percent == Decimal("15")

    with pytest.raises(ValidationError):
        await recipes.set_overhead_by_kode(U1, "A.1", "-1")


@pytest.mark.asyncio
async def test_set_overhead_on_existing_recipe_returns_loaded_row(recipes, item_a1):
    first = await recipes.set_overhead_by_kode(U1, "A.1", "12")
    second = await recipes.set_overhead_by_kode(U1, "A.1", "15")

    assert second.id == first.id
    assert second.overhead_percent == Decimal("15")
    assert second.updated_at is not None
    assert second.created_at is not None


@pytest.mark.asyncio
async def test_breakdown_price_policies(recipes, master_catalog, masters, item_a1):
    """CURRENT follows the live master price; SNAPSHOT keeps the price at add time."""
    await recipes.add_component_by_kode(GLOBAL, "A.1", "MATERIAL", masters["material"].id, coefficient="2")
    await recipes.add_component_by_kode(GLOBAL, "A.1", "LABOR", masters["labor"].id, price_override="90000")

    await master_catalog.update(masters["material"].id, {"price": "100000"})
    await master_catalog.update(masters["labor"].id, {"price": "120000"})

    current = await recipes.get_breakdown_by_kode(GLOBAL, "A.1", policy=PricePolicy.CURRENT)
    snapshot = await recipes.get_breakdown_by_kode(GLOBAL, "A.1", policy=PricePolicy.SNAPSHOT)

    assert current.recipe.computed.B == Decimal("200000")
    assert snapshot.recipe.computed.B == Decimal("160000")

    # Override wins under both policies
    assert current.recipe.computed.A == Decimal("90000")
    assert snapshot.recipe.computed.A == Decimal("90000")

    assert current.recipe.computed.D == Decimal("290000")
    assert current.recipe.computed.E == Decimal("29000")
    assert current.recipe.computed.F == Decimal("319000")
    assert snapshot.policy is PricePolicy.SNAPSHOT

    # Nothing was recomputed, so stored totals are still zero
    assert current.recipe.stored.final_unit_price == Decimal("0")


@pytest.mark.asyncio
async def test_breakdown_includes_master_reference(recipes, masters, item_a1):
    await recipes.add_component_by_kode(GLOBAL, "A.1", "EQUIPMENT", masters["equipment"].id)

    with_master = await recipes.get_breakdown_by_kode(GLOBAL, "A.1")
    without = await recipes.get_breakdown_by_kode(GLOBAL, "A.1", include_master=False)

    line = with_master.recipe.groups[ComponentGroup.EQUIPMENT].items[0]
    assert line.master_item.code == "EQP-01"
    assert without.recipe.groups[ComponentGroup.EQUIPMENT].items[0].master_item is None
    assert with_master.category.name == "PERSIAPAN"


@pytest.mark.asyncio
async def test_breakdown_lookups(recipes, item_a1):
    by_kode = await recipes.get_breakdown_by_kode(GLOBAL, "a.1")
    assert by_kode.kode == "A.1"
    assert by_kode.recipe is None

    by_id = await recipes.get_breakdown(item_a1.id)
    assert by_id.id == item_a1.id

    with pytest.raises(NotFoundError):
        await recipes.get_breakdown_by_kode(GLOBAL, "Z.9")
    with pytest.raises(NotFoundError):
        await recipes.get_breakdown(uuid4())
