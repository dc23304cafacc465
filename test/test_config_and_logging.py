import json
import logging
from pathlib import Path

import pytest

from conftest import run

from csl.application.container import build_container
from csl.config import LedgerSettings, get_app_paths, load_settings
from csl.domain.commands import Action
from csl.domain.models import LedgerState
from csl.logging_config import JsonFormatter
from csl.repositories.snapshot import to_snapshot
from csl.services.ledger_service import CommandHandler


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("CSL_DEFAULT_BAG_WEIGHT", "50")
    monkeypatch.setenv("CSL_LOSS_CATEGORY", "Shrinkage")

    settings = load_settings()

    assert settings.default_bag_weight == 50.0
    assert settings.loss_category == "Shrinkage"


def test_settings_reject_non_positive_bag_weight(monkeypatch):
    monkeypatch.setenv("CSL_DEFAULT_BAG_WEIGHT", "0")

    with pytest.raises(ValueError):
        load_settings()


def test_app_paths_honor_home_override(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("CSL_HOME", str(tmp_path / "ledger"))

    paths = get_app_paths()

    assert paths.base_dir == tmp_path / "ledger"
    assert paths.logs_dir.is_dir()
    assert paths.reports_dir.is_dir()


def test_custom_settings_flow_into_commands():
    handler = CommandHandler(LedgerSettings(default_bag_weight=50.0, loss_category="Shrinkage"))
    state = run(handler, LedgerState(), "addProduct", {"name": "Flour"})
    state = run(handler, state, "addContainer", {
        "lines": [{"product_id": 1, "bag_quantity": 2, "cost_per_kg": 1}],
    })
    state = run(handler, state, "destroyProduct", {"product_id": 1, "quantity": 1, "reason": "Wet"})

    assert state.product(1).bag_weight == 50.0
    assert state.containers[0].lines[0].bag_weight == 50.0
    assert state.expenses[0].category == "Shrinkage"
    assert state.expenses[0].amount == 50.0


def test_json_formatter_includes_action_kind():
    record = logging.LogRecord("csl.ledger", logging.WARNING, __file__, 1, "action_rejected kind=%s", ("addSale",), None)
    record.action_kind = "addSale"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "csl.ledger"
    assert payload["message"] == "action_rejected kind=addSale"
    assert payload["action"] == "addSale"


def test_build_container_loads_snapshot_and_wires_reporting():
    handler = CommandHandler()
    seeded = run(handler, LedgerState(), "addProduct", {"name": "Rice", "current_stock": 4, "cost_per_kg": 2})

    app = build_container(snapshot=to_snapshot(seeded), settings=LedgerSettings())
    app.store.dispatch(Action("addSale", {"product_id": 1, "quantity": 1, "price_per_unit": 60}))

    assert app.store.state.product(1).current_stock == 3
    assert round(app.reporting.profit_loss().revenue, 2) == 60.0
