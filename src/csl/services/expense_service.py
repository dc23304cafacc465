from __future__ import annotations

from dataclasses import replace
from typing import Any, Mapping, Optional

from csl.domain.errors import NotFoundError, ValidationError
from csl.domain.ids import next_id
from csl.domain.models import CashFlow, Expense, LedgerState
from csl.services._crud import money, now_iso, patch, remove_by_id, replace_by_id


class ExpenseService:
    EDITABLE = ("category", "amount", "date", "description", "notes")
    CASH_FLOW_EDITABLE = ("date", "opening_balance", "cash_in", "cash_out", "actual_balance", "reconciled_by", "notes")

    def add_expense(self, state: LedgerState, payload: Mapping[str, Any], now: Optional[str] = None) -> LedgerState:
        now = now or now_iso()
        category = str(payload.get("category") or "").strip()
        if not category:
            raise ValidationError("Expense category is required.")

        expense_id, metadata = next_id(state.metadata, "expense")
        expense = Expense(
            id=expense_id,
            category=category,
            amount=money(payload.get("amount"), "Expense amount", allow_zero=False),
            date=payload.get("date") or now[:10],
            description=payload.get("description"),
            notes=payload.get("notes"),
            created_at=now,
        )
        return replace(state, metadata=metadata, expenses=state.expenses + (expense,))

    def update_expense(self, state: LedgerState, expense_id: int, data: Mapping[str, Any]) -> LedgerState:
        expense = next((e for e in state.expenses if e.id == expense_id), None)
        if expense is None:
            raise NotFoundError("Expense not found.")
        data = dict(data)
        if "amount" in data:
            data["amount"] = money(data["amount"], "Expense amount", allow_zero=False)
        if "category" in data and not str(data["category"] or "").strip():
            raise ValidationError("Expense category is required.")
        return replace(state, expenses=replace_by_id(state.expenses, patch(expense, data, self.EDITABLE)))

    def delete_expense(self, state: LedgerState, expense_id: int) -> LedgerState:
        if not any(e.id == expense_id for e in state.expenses):
            raise NotFoundError("Expense not found.")
        return replace(state, expenses=remove_by_id(state.expenses, expense_id))

    # ------------------------------------------------------------------
    # cash reconciliation
    # ------------------------------------------------------------------

    def add_cash_flow(self, state: LedgerState, payload: Mapping[str, Any], now: Optional[str] = None) -> LedgerState:
        now = now or now_iso()
        flow_id, metadata = next_id(state.metadata, "cash_flow")
        flow = self._reconcile(CashFlow(
            id=flow_id,
            date=payload.get("date") or now[:10],
            opening_balance=self._signed(payload.get("opening_balance", 0), "Opening balance"),
            cash_in=money(payload.get("cash_in", 0) or 0, "Cash in"),
            cash_out=money(payload.get("cash_out", 0) or 0, "Cash out"),
            theoretical_balance=0.0,
            actual_balance=payload.get("actual_balance"),
            reconciled_by=payload.get("reconciled_by"),
            notes=payload.get("notes"),
        ), now)
        return replace(state, metadata=metadata, cash_flows=state.cash_flows + (flow,))

    def update_cash_flow(
        self,
        state: LedgerState,
        flow_id: str,
        data: Mapping[str, Any],
        now: Optional[str] = None,
    ) -> LedgerState:
        now = now or now_iso()
        flow = next((f for f in state.cash_flows if f.id == flow_id), None)
        if flow is None:
            raise NotFoundError("Cash flow record not found.")
        data = dict(data)
        if "opening_balance" in data:
            data["opening_balance"] = self._signed(data["opening_balance"], "Opening balance")
        for key, label in (("cash_in", "Cash in"), ("cash_out", "Cash out")):
            if key in data:
                data[key] = money(data[key], label)
        updated = self._reconcile(patch(flow, data, self.CASH_FLOW_EDITABLE), now)
        return replace(state, cash_flows=replace_by_id(state.cash_flows, updated))

    def delete_cash_flow(self, state: LedgerState, flow_id: str) -> LedgerState:
        if not any(f.id == flow_id for f in state.cash_flows):
            raise NotFoundError("Cash flow record not found.")
        return replace(state, cash_flows=remove_by_id(state.cash_flows, flow_id))

    @staticmethod
    def _signed(value: Any, label: str) -> float:
        try:
            return float(value or 0)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{label} must be a number.") from e

    def _reconcile(self, flow: CashFlow, now: str) -> CashFlow:
        theoretical = flow.opening_balance + flow.cash_in - flow.cash_out
        if flow.actual_balance is None:
            return replace(
                flow,
                theoretical_balance=theoretical,
                discrepancy=None,
                reconciled=False,
                reconciled_at=None,
            )
        actual = self._signed(flow.actual_balance, "Actual balance")
        return replace(
            flow,
            theoretical_balance=theoretical,
            actual_balance=actual,
            discrepancy=actual - theoretical,
            reconciled=True,
            reconciled_at=flow.reconciled_at or now,
        )
