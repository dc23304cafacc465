from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from csl.config import LedgerSettings
from csl.domain import commands as c
from csl.domain.commands import Action
from csl.domain.errors import AppError, PersistenceError, ValidationError
from csl.domain.ids import repair_ids
from csl.domain.models import LedgerState
from csl.repositories.snapshot import from_snapshot
from csl.services._crud import now_iso, whole
from csl.services.capital_service import CapitalService
from csl.services.costing_service import CostingService
from csl.services.expense_service import ExpenseService
from csl.services.integrity_service import validate_snapshot
from csl.services.inventory_service import InventoryService
from csl.services.sales_service import SalesService

log = logging.getLogger("csl.ledger")


@dataclass(frozen=True)
class SaveResult:
    success: bool
    error: Optional[str] = None


SaveOutcome = Union[SaveResult, Mapping[str, Any]]
Saver = Callable[[LedgerState], Union[SaveOutcome, Awaitable[SaveOutcome]]]


def _mapping(payload: Any, kind: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValidationError(f"{kind} expects an object payload.")
    return payload


def _target(payload: Any) -> Any:
    if isinstance(payload, Mapping):
        return payload.get("id")
    return payload


def _update_args(payload: Any, kind: str) -> tuple[Any, Mapping[str, Any]]:
    payload = _mapping(payload, kind)
    data = payload.get("data") or {}
    if not isinstance(data, Mapping):
        raise ValidationError(f"{kind} expects an object under 'data'.")
    return payload.get("id"), data


class CommandHandler:
    """Single entry point for every ledger mutation.

    ``apply`` is a pure transition: it never mutates the incoming state and
    returns either the next state or the incoming state with ``error`` set.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self.settings = settings or LedgerSettings()
        self.costing = CostingService(self.settings)
        self.sales = SalesService(self.settings)
        self.inventory = InventoryService(self.settings)
        self.capital = CapitalService()
        self.expenses = ExpenseService()

        self._handlers: dict[str, Callable[[LedgerState, Any, str], LedgerState]] = {
            c.ADD_CONTAINER: lambda s, p, now: self.costing.add_container(s, _mapping(p, c.ADD_CONTAINER), now),
            c.UPDATE_CONTAINER: self._update_container,
            c.DELETE_CONTAINER: lambda s, p, now: self.costing.delete_container(s, _target(p)),
            c.ADJUST_CONTAINER_PRICES: self._adjust_container_prices,
            c.ADD_PRODUCT: lambda s, p, now: self.inventory.add_product(s, _mapping(p, c.ADD_PRODUCT), now),
            c.UPDATE_PRODUCT: self._update_product,
            c.DELETE_PRODUCT: lambda s, p, now: self.inventory.delete_product(s, whole(_target(p), "Product id")),
            c.DESTROY_PRODUCT: lambda s, p, now: self.sales.destroy_product(s, _mapping(p, c.DESTROY_PRODUCT), now),
            c.ADD_SALE: lambda s, p, now: self.sales.add_sale(s, _mapping(p, c.ADD_SALE), now),
            c.DELETE_SALE: lambda s, p, now: self.sales.delete_sale(s, whole(_target(p), "Sale id")),
            c.ADD_EXPENSE: lambda s, p, now: self.expenses.add_expense(s, _mapping(p, c.ADD_EXPENSE), now),
            c.UPDATE_EXPENSE: self._update_expense,
            c.DELETE_EXPENSE: lambda s, p, now: self.expenses.delete_expense(s, whole(_target(p), "Expense id")),
            c.ADD_PARTNER: lambda s, p, now: self.capital.add_partner(s, _mapping(p, c.ADD_PARTNER), now),
            c.UPDATE_PARTNER: lambda s, p, now: self.capital.update_partner(s, *_update_args(p, c.UPDATE_PARTNER)),
            c.DELETE_PARTNER: lambda s, p, now: self.capital.delete_partner(s, _target(p)),
            c.ADD_WITHDRAWAL: lambda s, p, now: self.capital.add_withdrawal(s, _mapping(p, c.ADD_WITHDRAWAL), now),
            c.DELETE_WITHDRAWAL: lambda s, p, now: self.capital.delete_withdrawal(s, _target(p)),
            c.ADD_CASH_INJECTION: lambda s, p, now: self.capital.add_cash_injection(
                s, _mapping(p, c.ADD_CASH_INJECTION), now
            ),
            c.UPDATE_CASH_INJECTION: lambda s, p, now: self.capital.update_cash_injection(
                s, *_update_args(p, c.UPDATE_CASH_INJECTION)
            ),
            c.DELETE_CASH_INJECTION: lambda s, p, now: self.capital.delete_cash_injection(s, _target(p)),
            c.ADD_CASH_FLOW: lambda s, p, now: self.expenses.add_cash_flow(s, _mapping(p, c.ADD_CASH_FLOW), now),
            c.UPDATE_CASH_FLOW: lambda s, p, now: self.expenses.update_cash_flow(
                s, *_update_args(p, c.UPDATE_CASH_FLOW), now
            ),
            c.DELETE_CASH_FLOW: lambda s, p, now: self.expenses.delete_cash_flow(s, _target(p)),
            c.FIX_MALFORMED_IDS: lambda s, p, now: repair_ids(s),
            c.LOAD_DATA: self._load_data,
            c.MARK_SAVED: lambda s, p, now: replace(s, metadata=replace(s.metadata, unsaved_changes=False)),
            c.CLEAR_ERROR: lambda s, p, now: replace(s, error=None),
        }

    @property
    def kinds(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def apply(self, state: LedgerState, action: Action, now: Optional[str] = None) -> LedgerState:
        now = now or now_iso()
        handler = self._handlers.get(action.kind)
        if handler is None:
            return replace(state, error=f"Unknown action: {action.kind}")

        try:
            new_state = handler(state, action.payload, now)
        except AppError as e:
            log.warning("action_rejected kind=%s error=%s", action.kind, e, extra={"action_kind": action.kind})
            return replace(state, error=str(e))

        if action.kind in c.NON_MUTATING_KINDS:
            return new_state
        if new_state is state:
            # Nothing changed, but the command still succeeded.
            return state if state.error is None else replace(state, error=None)

        log.debug("action_applied kind=%s", action.kind, extra={"action_kind": action.kind})
        return replace(
            new_state,
            error=None,
            metadata=replace(new_state.metadata, last_updated=now, unsaved_changes=True),
        )

    # ------------------------------------------------------------------
    # payload unpacking
    # ------------------------------------------------------------------

    def _update_container(self, state: LedgerState, payload: Any, now: str) -> LedgerState:
        container_id, data = _update_args(payload, c.UPDATE_CONTAINER)
        return self.costing.update_container(state, container_id, data, now)

    def _adjust_container_prices(self, state: LedgerState, payload: Any, now: str) -> LedgerState:
        payload = _mapping(payload, c.ADJUST_CONTAINER_PRICES)
        return self.costing.adjust_prices(
            state,
            payload.get("container_id"),
            payload.get("adjustments") or [],
            reason=payload.get("reason"),
            now=now,
        )

    def _update_product(self, state: LedgerState, payload: Any, now: str) -> LedgerState:
        product_id, data = _update_args(payload, c.UPDATE_PRODUCT)
        return self.inventory.update_product(state, whole(product_id, "Product id"), data)

    def _update_expense(self, state: LedgerState, payload: Any, now: str) -> LedgerState:
        expense_id, data = _update_args(payload, c.UPDATE_EXPENSE)
        return self.expenses.update_expense(state, whole(expense_id, "Expense id"), data)

    def _load_data(self, state: LedgerState, payload: Any, now: str) -> LedgerState:
        report = validate_snapshot(payload)
        if not report.is_valid:
            raise ValidationError("Invalid snapshot: " + "; ".join(report.errors))
        loaded = from_snapshot(payload)
        log.info(
            "snapshot_loaded products=%s containers=%s sales=%s partners=%s warnings=%s",
            len(loaded.products), len(loaded.containers), len(loaded.sales), len(loaded.partners),
            len(report.warnings),
        )
        return loaded


_default_handler = CommandHandler()


def apply_action(state: LedgerState, action: Action, now: Optional[str] = None) -> LedgerState:
    return _default_handler.apply(state, action, now)


class LedgerStore:
    """Owns the current LedgerState and serialises every transition.

    The save collaborator receives the exact state a command committed, so a
    save never reads a half-applied ledger.
    """

    def __init__(
        self,
        handler: Optional[CommandHandler] = None,
        state: Optional[LedgerState] = None,
        saver: Optional[Saver] = None,
    ):
        self.handler = handler or CommandHandler()
        self._state = state or LedgerState()
        self._saver = saver
        self._lock = threading.Lock()

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    def register_saver(self, saver: Optional[Saver]) -> None:
        self._saver = saver

    def dispatch(self, action: Action, now: Optional[str] = None) -> LedgerState:
        with self._lock:
            self._state = self.handler.apply(self._state, action, now)
            return self._state

    async def save(self, state: Optional[LedgerState] = None) -> SaveResult:
        if self._saver is None:
            raise PersistenceError("No save function registered.")
        committed = state or self._state
        try:
            outcome = self._saver(committed)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except PersistenceError:
            raise
        except Exception as e:
            log.error("save_failed error=%s", e)
            raise PersistenceError(f"Save failed: {e}") from e

        result = self._as_result(outcome)
        if not result.success:
            log.error("save_failed error=%s", result.error)
            raise PersistenceError(result.error or "Save failed.")

        with self._lock:
            # Later commands keep the ledger dirty.
            if self._state is committed:
                self._state = self.handler.apply(committed, Action(c.MARK_SAVED))
        log.info("ledger_saved last_updated=%s", committed.metadata.last_updated)
        return result

    async def dispatch_and_save(self, action: Action, now: Optional[str] = None) -> LedgerState:
        committed = self.dispatch(action, now)
        if committed.error is None and action.kind in c.SAVE_TRIGGERING_KINDS and self._saver is not None:
            await self.save(committed)
        return self._state

    @staticmethod
    def _as_result(outcome: Any) -> SaveResult:
        if isinstance(outcome, SaveResult):
            return outcome
        if isinstance(outcome, Mapping):
            return SaveResult(success=bool(outcome.get("success")), error=outcome.get("error"))
        raise PersistenceError(f"Save function returned an unexpected result: {outcome!r}")
