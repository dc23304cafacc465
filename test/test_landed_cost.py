import pytest

from conftest import run, seed_example

from csl.domain.models import LedgerState
from csl.services.ledger_service import CommandHandler


def _two_containers(handler, second_price=2.0):
    state = run(handler, LedgerState(), "addProduct", {"name": "Beans", "bag_weight": 25})
    for price in (2.0, second_price):
        state = run(handler, state, "addContainer", {
            "lines": [{"product_id": 1, "bag_quantity": 10, "cost_per_kg": price, "bag_weight": 25}],
        })
    assert state.error is None
    return state


def test_first_container_sets_landed_cost_with_overhead():
    state = seed_example(CommandHandler())

    product = state.product(1)
    assert product.current_stock == 10
    assert product.cost_per_kg == pytest.approx(2.6)
    assert state.containers[0].id == "C1"
    assert state.containers[0].overhead_per_bag == pytest.approx(15.0)


def test_second_container_blends_cost_by_kilogram():
    handler = CommandHandler()
    state = seed_example(handler)
    state = run(handler, state, "addContainer", {
        "lines": [{"product_id": 1, "bag_quantity": 10, "cost_per_kg": 3.0, "bag_weight": 25}],
    })

    product = state.product(1)
    assert product.current_stock == 20
    assert product.cost_per_kg == pytest.approx(2.8)
    assert state.containers[1].id == "C2"


def test_overhead_is_split_per_bag_across_lines():
    handler = CommandHandler()
    state = run(handler, LedgerState(), "addProduct", {"name": "Rice", "bag_weight": 25})
    state = run(handler, state, "addProduct", {"name": "Flour", "bag_weight": 50})
    state = run(handler, state, "addContainer", {
        "shipping_cost": 400,
        "lines": [
            {"product_id": 1, "bag_quantity": 10, "cost_per_kg": 2, "bag_weight": 25},
            {"product_id": 2, "bag_quantity": 30, "cost_per_kg": 1, "bag_weight": 50},
        ],
    })

    assert state.product(1).cost_per_kg == pytest.approx(2.4)
    assert state.product(2).cost_per_kg == pytest.approx(1.2)
    assert state.product(2).current_stock == 30


def test_container_line_can_create_product_on_first_reference():
    handler = CommandHandler()
    state = run(handler, LedgerState(), "addContainer", {
        "lines": [{"product_name": "Sugar", "category": "Sweet", "bag_quantity": 4, "cost_per_kg": 1.5, "bag_weight": 50}],
    })

    assert state.error is None
    product = state.product(1)
    assert product.name == "Sugar"
    assert product.current_stock == 4
    assert product.cost_per_kg == pytest.approx(1.5)
    assert state.metadata.next_ids.product == 2


def test_container_rejects_unknown_product():
    handler = CommandHandler()
    state = run(handler, LedgerState(), "addContainer", {
        "lines": [{"product_id": 9, "bag_quantity": 4, "cost_per_kg": 1.5, "bag_weight": 50}],
    })

    assert state.error == "Product 9 not found."
    assert state.containers == ()


def test_edit_container_matches_fresh_create_when_it_was_the_only_stock():
    handler = CommandHandler()
    state = seed_example(handler)
    state = run(handler, state, "updateContainer", {
        "id": "C1",
        "data": {"lines": [{"product_id": 1, "bag_quantity": 20, "cost_per_kg": 2, "bag_weight": 25}]},
    })

    product = state.product(1)
    assert state.error is None
    assert product.current_stock == 20
    # overhead 150 / 20 bags = 7.5 per bag
    assert product.cost_per_kg == pytest.approx(2.3)
    assert state.containers[0].lines[0].bag_quantity == 20


def test_edit_container_keeps_blended_cost_when_other_stock_remains():
    handler = CommandHandler()
    state = _two_containers(handler)
    state = run(handler, state, "updateContainer", {
        "id": "C2",
        "data": {"lines": [{"product_id": 1, "bag_quantity": 10, "cost_per_kg": 4.0, "bag_weight": 25}]},
    })

    product = state.product(1)
    assert product.current_stock == 20
    # revert leaves 2.0/kg on the remaining 10 bags, then blends in 4.0/kg
    assert product.cost_per_kg == pytest.approx(3.0)


def test_edit_container_name_only_leaves_stock_alone():
    handler = CommandHandler()
    state = seed_example(handler)
    before = state.product(1)
    state = run(handler, state, "updateContainer", {"id": "C1", "data": {"name": "Renamed"}})

    assert state.containers[0].name == "Renamed"
    assert state.product(1) == before


def test_edit_unknown_container_is_rejected():
    handler = CommandHandler()
    state = seed_example(handler)
    after = run(handler, state, "updateContainer", {"id": "C9", "data": {"name": "x"}})

    assert after.error == "Container not found"
    assert after.containers == state.containers


def test_delete_container_with_sales_history_is_rejected():
    handler = CommandHandler()
    state = seed_example(handler)
    state = run(handler, state, "addSale", {"product_id": 1, "quantity": 3, "price_per_unit": 80})

    after = run(handler, state, "deleteContainer", "C1")

    assert "Rice" in after.error
    assert "sales history" in after.error
    assert after.containers == state.containers
    assert after.products == state.products


def test_delete_container_that_would_leave_negative_stock_is_rejected():
    handler = CommandHandler()
    state = seed_example(handler)
    state = run(handler, state, "destroyProduct", {"product_id": 1, "quantity": 5, "reason": "Water damage"})

    after = run(handler, state, "deleteContainer", "C1")

    assert "negative stock" in after.error
    assert "shortage: 5 bags" in after.error
    assert after.products == state.products


def test_delete_container_reverts_stock_but_not_cost():
    handler = CommandHandler()
    state = _two_containers(handler, second_price=3.0)
    cost_before = state.product(1).cost_per_kg

    state = run(handler, state, "deleteContainer", "C2")

    assert state.error is None
    assert [c.id for c in state.containers] == ["C1"]
    assert state.product(1).current_stock == 10
    assert state.product(1).cost_per_kg == pytest.approx(cost_before)


def test_price_adjustment_is_proportional_to_container_share_of_stock():
    handler = CommandHandler()
    state = _two_containers(handler)
    assert state.product(1).cost_per_kg == pytest.approx(2.0)

    state = run(handler, state, "adjustContainerPrices", {
        "container_id": "C1",
        "adjustments": [{"product_id": 1, "new_cost_per_kg": 3.0}],
        "reason": "Supplier invoice corrected",
    })

    assert state.error is None
    assert state.product(1).cost_per_kg == pytest.approx(2.5)
    record = state.price_adjustments[0]
    assert record.id == "PA1"
    assert record.weight == pytest.approx(0.5)
    assert record.cost_delta == pytest.approx(0.5)
    assert record.old_cost_per_kg == 2.0
    assert state.container("C1").lines[0].cost_per_kg == 3.0
    assert state.container("C1").price_adjustments == ("PA1",)


def test_price_adjustment_without_stock_resets_cost():
    handler = CommandHandler()
    state = seed_example(handler)
    state = run(handler, state, "destroyProduct", {"product_id": 1, "quantity": 10, "reason": "Spoiled"})

    state = run(handler, state, "adjustContainerPrices", {
        "container_id": "C1",
        "adjustments": [{"product_id": 1, "new_cost_per_kg": 5.0}],
    })

    assert state.product(1).cost_per_kg == 0.0
    assert len(state.price_adjustments) == 1


def test_price_adjustment_never_restates_past_sales():
    handler = CommandHandler()
    state = seed_example(handler)
    state = run(handler, state, "addSale", {"product_id": 1, "quantity": 3, "price_per_unit": 80})

    state = run(handler, state, "adjustContainerPrices", {
        "container_id": "C1",
        "adjustments": [{"product_id": 1, "new_cost_per_kg": 3.0}],
    })

    assert state.error is None
    assert state.sales[0].cost_per_unit == pytest.approx(65.0)
    assert state.product(1).cost_per_kg > 2.6


def test_price_adjustment_with_unchanged_price_is_a_no_op():
    handler = CommandHandler()
    state = seed_example(handler)

    after = run(handler, state, "adjustContainerPrices", {
        "container_id": "C1",
        "adjustments": [{"product_id": 1, "new_cost_per_kg": 2}],
    })

    assert after is state


def test_overhead_only_edit_reapplies_container():
    handler = CommandHandler()
    state = seed_example(handler)

    state = run(handler, state, "updateContainer", {"id": "C1", "data": {"shipping_cost": 350}})

    product = state.product(1)
    assert state.error is None
    assert product.current_stock == 10
    # overhead 400 / 10 bags = 40 per bag
    assert product.cost_per_kg == pytest.approx(3.6)


def test_shrinking_partly_sold_container_floors_stock_then_reapplies():
    handler = CommandHandler()
    state = seed_example(handler)
    state = run(handler, state, "addSale", {"product_id": 1, "quantity": 6, "price_per_unit": 80})

    state = run(handler, state, "updateContainer", {
        "id": "C1",
        "data": {"lines": [{"product_id": 1, "bag_quantity": 5, "cost_per_kg": 2, "bag_weight": 25}]},
    })

    assert state.error is None
    # 4 left after the sale, reverted to 0, then the 5 edited bags come back
    assert state.product(1).current_stock == 5
