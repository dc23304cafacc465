from dataclasses import replace

import pytest

from conftest import NOW, run, seed_example

from csl.domain.commands import Action
from csl.domain.models import LedgerState
from csl.repositories.snapshot import to_snapshot
from csl.services.integrity_service import validate_snapshot
from csl.services.ledger_service import CommandHandler, apply_action


def test_initial_state_counters_start_at_one():
    state = LedgerState()

    assert state.metadata.unsaved_changes is False
    assert state.error is None
    ids = state.metadata.next_ids
    assert (ids.product, ids.container, ids.partner, ids.cash_injection, ids.price_adjustment) == (1, 1, 1, 1, 1)


def test_unknown_action_sets_error_only():
    state = LedgerState()

    after = apply_action(state, Action("teleportStock", {}))

    assert after.error == "Unknown action: teleportStock"
    assert replace(after, error=None) == state


def test_successful_command_clears_error_and_marks_unsaved():
    handler = CommandHandler()
    state = replace(LedgerState(), error="previous failure")

    state = run(handler, state, "addProduct", {"name": "Rice"})

    assert state.error is None
    assert state.metadata.unsaved_changes is True
    assert state.metadata.last_updated == NOW


def test_rejected_command_keeps_previous_state():
    handler = CommandHandler()
    state = seed_example(handler)

    after = run(handler, state, "addProduct", {"name": "Rice"})

    assert after.error
    assert after.products == state.products
    assert after.metadata == state.metadata


def test_payload_of_wrong_shape_is_rejected():
    handler = CommandHandler()

    after = run(handler, LedgerState(), "addSale", "not-an-object")

    assert after.error == "addSale expects an object payload."


def test_apply_never_mutates_input_state():
    handler = CommandHandler()
    state = seed_example(handler)
    snapshot_before = to_snapshot(state)

    run(handler, state, "addSale", {"product_id": 1, "quantity": 2, "price_per_unit": 90})
    run(handler, state, "deleteContainer", "C1")

    assert to_snapshot(state) == snapshot_before


def test_mark_saved_and_clear_error():
    handler = CommandHandler()
    state = run(handler, LedgerState(), "addProduct", {"name": "Rice"})
    state = replace(state, error="boom")

    state = run(handler, state, "clearError")
    assert state.error is None
    assert state.metadata.unsaved_changes is True

    state = run(handler, state, "markSaved")
    assert state.metadata.unsaved_changes is False


def test_load_data_replaces_state_and_starts_clean():
    handler = CommandHandler()
    state = seed_example(handler)
    snapshot = to_snapshot(state)

    loaded = run(handler, LedgerState(), "loadData", snapshot)

    assert loaded.error is None
    assert loaded.products == state.products
    assert loaded.containers == state.containers
    assert loaded.metadata.next_ids == state.metadata.next_ids
    assert loaded.metadata.unsaved_changes is False


def test_invalid_load_data_leaves_state_unchanged():
    handler = CommandHandler()
    state = seed_example(handler)

    after = run(handler, state, "loadData", {"products": "nope"})

    assert after.error.startswith("Invalid snapshot")
    assert after.products == state.products


def test_snapshot_uses_camel_case_and_keeps_container_lines_under_products():
    state = seed_example(CommandHandler())

    snapshot = to_snapshot(state)

    container = snapshot["containers"][0]
    assert container["id"] == "C1"
    assert container["shippingCost"] == 100
    assert container["totalBags"] == 10
    assert container["products"][0]["bagQuantity"] == 10
    assert container["products"][0]["costPerKg"] == 2
    assert snapshot["products"][0]["bagWeight"] == 25
    assert snapshot["metadata"]["nextIds"]["container"] == 2
    assert snapshot["metadata"]["nextIds"]["cashInjection"] == 1


def test_legacy_cost_per_unit_is_read_as_cost_per_kg():
    handler = CommandHandler()

    state = run(handler, LedgerState(), "loadData", {
        "products": [{"id": 1, "name": "Rice", "bagWeight": 25, "currentStock": 4, "costPerUnit": 2.5}],
        "containers": [{
            "id": "C1",
            "products": [{"productId": 1, "bagQuantity": 4, "costPerUnit": 2.5, "bagWeight": 25}],
        }],
    })

    assert state.product(1).cost_per_kg == pytest.approx(2.5)
    assert state.container("C1").lines[0].cost_per_kg == pytest.approx(2.5)
    assert state.metadata.next_ids.container == 2


def test_expense_lifecycle():
    handler = CommandHandler()
    state = run(handler, LedgerState(), "addExpense", {"category": "Rent", "amount": 300, "date": "2024-05-03"})
    assert state.expenses[0].id == 1

    state = run(handler, state, "updateExpense", {"id": 1, "data": {"amount": 320, "description": "May rent"}})
    assert state.expenses[0].amount == 320
    assert state.expenses[0].description == "May rent"

    state = run(handler, state, "deleteExpense", 1)
    assert state.expenses == ()
    assert state.metadata.next_ids.expense == 2


def test_expense_requires_positive_amount_and_category():
    handler = CommandHandler()

    assert run(handler, LedgerState(), "addExpense", {"category": "Rent", "amount": 0}).error
    assert run(handler, LedgerState(), "addExpense", {"amount": 10}).error
    assert run(handler, LedgerState(), "addExpense", {"category": "Rent", "amount": float("inf")}).error


def test_cash_flow_reconciliation():
    handler = CommandHandler()
    state = run(handler, LedgerState(), "addCashFlow", {
        "date": "2024-05-01",
        "opening_balance": 1000,
        "cash_in": 500,
        "cash_out": 200,
    })

    flow = state.cash_flows[0]
    assert flow.id == "CF1"
    assert flow.theoretical_balance == pytest.approx(1300)
    assert flow.reconciled is False

    state = run(handler, state, "updateCashFlow", {"id": "CF1", "data": {"actual_balance": 1250, "reconciled_by": "Amina"}})

    flow = state.cash_flows[0]
    assert flow.reconciled is True
    assert flow.discrepancy == pytest.approx(-50)
    assert flow.reconciled_at == NOW

    state = run(handler, state, "deleteCashFlow", {"id": "CF1"})
    assert state.cash_flows == ()


def test_editing_unknown_field_is_rejected():
    handler = CommandHandler()
    state = run(handler, LedgerState(), "addProduct", {"name": "Rice"})

    after = run(handler, state, "updateProduct", {"id": 1, "data": {"created_at": "1999-01-01"}})

    assert after.error
    assert after.product(1).created_at == NOW


def test_every_command_kind_is_handled():
    kinds = CommandHandler().kinds

    for kind in (
        "addContainer", "updateContainer", "deleteContainer", "adjustContainerPrices",
        "addProduct", "updateProduct", "deleteProduct", "destroyProduct",
        "addSale", "deleteSale", "addExpense", "deleteExpense",
        "addPartner", "updatePartner", "deletePartner", "addWithdrawal", "deleteWithdrawal",
        "addCashInjection", "updateCashInjection", "deleteCashInjection",
        "fixMalformedIds", "loadData",
    ):
        assert kind in kinds


def test_snapshot_validation_reports_errors_and_warnings():
    report = validate_snapshot({
        "products": [{"id": 1, "name": "Rice"}, {"id": 1, "name": "Rice again"}],
        "partners": [{"id": "PNaN", "name": "Joseph"}],
        "withdrawals": [{"id": "W1", "partnerId": "P4", "amount": 10}],
    })

    assert not report.is_valid
    assert report.errors == ("Duplicate products IDs found: 1",)
    assert "1 withdrawals reference non-existent partners" in report.warnings
    assert report.malformed_ids == ("PNaN",)
    assert not validate_snapshot([]).is_valid


@pytest.mark.parametrize("snapshot", [
    {"products": [{"id": 1, "name": "Rice", "currentStock": "NaN"}]},
    {"products": [{"id": 1, "name": "Rice", "costPerKg": "NaN", "currentStock": 4}]},
    {"containers": [{"id": "C1", "products": [5]}]},
    {"containers": [{"id": "C1", "products": [{"productId": 1, "bagQuantity": "lots"}]}]},
    {"partners": [{"id": "P1", "name": "Amina", "capitalAccount": "1000"}]},
    {"partners": [{"id": "P1", "name": "Amina", "capitalAccount": {"initialInvestment": float("inf")}}]},
])
def test_corrupted_snapshot_values_are_reported_not_raised(snapshot):
    handler = CommandHandler()
    state = seed_example(handler)

    after = run(handler, state, "loadData", snapshot)

    assert after.error.startswith("Invalid snapshot")
    assert after.products == state.products
    assert after.containers == state.containers


def test_nan_cost_cannot_reach_a_sale():
    handler = CommandHandler()
    state = run(handler, LedgerState(), "loadData", {
        "products": [{"id": 1, "name": "Rice", "bagWeight": 25, "costPerKg": "NaN", "currentStock": 4}],
    })
    state = run(handler, state, "addSale", {"product_id": 1, "quantity": 1, "price_per_unit": 80})

    assert state.sales == ()
    assert state.error


def test_success_without_changes_still_clears_previous_error():
    handler = CommandHandler()
    state = seed_example(handler)
    state = run(handler, state, "addSale", {"product_id": 1, "quantity": 99, "price_per_unit": 80})
    assert state.error

    after = run(handler, state, "fixMalformedIds")

    assert after.error is None
    assert after.products == state.products
    assert after.metadata == state.metadata
