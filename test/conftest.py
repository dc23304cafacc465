import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


NOW = "2024-05-01 10:00:00"


def run(handler, state, kind, payload=None, now=NOW):
    from csl.domain.commands import Action

    return handler.apply(state, Action(kind, payload), now=now)


def seed_example(handler):
    """One product with 10 bags landed at 2.6/kg (25 kg bags, 150 overhead)."""
    from csl.domain.models import LedgerState

    state = run(handler, LedgerState(), "addProduct", {"name": "Rice", "category": "Grain", "bag_weight": 25})
    state = run(handler, state, "addContainer", {
        "name": "First shipment",
        "shipping_cost": 100,
        "customs_cost": 50,
        "lines": [{"product_id": 1, "bag_quantity": 10, "cost_per_kg": 2, "bag_weight": 25}],
    })
    assert state.error is None
    return state
