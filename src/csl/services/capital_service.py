from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping, Optional

from csl.domain.errors import IntegrityGuardError, NotFoundError, ValidationError
from csl.domain.ids import next_id
from csl.domain.models import (
    INJECTION_TYPES,
    CapitalAccount,
    CashInjection,
    Contribution,
    LedgerState,
    Partner,
    Withdrawal,
)
from csl.services._crud import money, now_iso, patch, remove_by_id, replace_by_id

log = logging.getLogger("csl.capital")


def with_equity(account: CapitalAccount) -> CapitalAccount:
    """Recompute the stored equity: initial investment + profit share - withdrawn."""
    equity = account.initial_investment + account.profit_share - account.total_withdrawn
    return replace(account, current_equity=equity)


class CapitalService:
    PARTNER_EDITABLE = ("name", "email", "phone", "ownership_percent", "role", "join_date", "active", "profit_share")
    INJECTION_EDITABLE = ("type", "amount", "partner_id", "date", "description")

    # ------------------------------------------------------------------
    # partners
    # ------------------------------------------------------------------

    def add_partner(self, state: LedgerState, payload: Mapping[str, Any], now: Optional[str] = None) -> LedgerState:
        now = now or now_iso()
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValidationError("Partner name is required.")
        initial = money(payload.get("initial_investment", 0) or 0, "Initial investment")
        ownership = money(payload.get("ownership_percent", 0) or 0, "Ownership percent")
        if ownership > 100:
            raise ValidationError("Ownership percent must be <= 100.")

        partner_id, metadata = next_id(state.metadata, "partner")
        partner = Partner(
            id=partner_id,
            name=name,
            capital_account=with_equity(CapitalAccount(initial_investment=initial)),
            email=payload.get("email"),
            phone=payload.get("phone"),
            ownership_percent=ownership,
            role=payload.get("role"),
            join_date=payload.get("join_date") or now[:10],
            active=bool(payload.get("active", True)),
            created_at=now,
        )
        log.info("partner_created partner_id=%s initial_investment=%.2f", partner.id, initial)
        return replace(state, metadata=metadata, partners=state.partners + (partner,))

    def update_partner(self, state: LedgerState, partner_id: str, data: Mapping[str, Any]) -> LedgerState:
        partner = state.partner(partner_id)
        if partner is None:
            raise NotFoundError("Partner not found.")

        data = dict(data)
        profit_share = data.pop("profit_share", None)
        if "ownership_percent" in data:
            data["ownership_percent"] = money(data["ownership_percent"], "Ownership percent")
            if data["ownership_percent"] > 100:
                raise ValidationError("Ownership percent must be <= 100.")
        if "name" in data and not str(data["name"] or "").strip():
            raise ValidationError("Partner name is required.")

        updated = patch(partner, data, self.PARTNER_EDITABLE)
        if profit_share is not None:
            try:
                share = float(profit_share)
            except (TypeError, ValueError) as e:
                raise ValidationError("Profit share must be a number.") from e
            updated = replace(updated, capital_account=with_equity(replace(updated.capital_account, profit_share=share)))
        return replace(state, partners=replace_by_id(state.partners, updated))

    def delete_partner(self, state: LedgerState, partner_id: str) -> LedgerState:
        if state.partner(partner_id) is None:
            raise NotFoundError("Partner not found.")
        if any(w.partner_id == partner_id for w in state.withdrawals):
            raise IntegrityGuardError("Cannot delete partner with withdrawal history", offending=[partner_id])
        contributions = [ci.id for ci in state.cash_injections if ci.partner_id == partner_id]
        if contributions:
            raise IntegrityGuardError(
                f"Cannot delete partner with recorded cash injections: {', '.join(contributions)}",
                offending=contributions,
            )
        log.info("partner_deleted partner_id=%s", partner_id)
        return replace(state, partners=remove_by_id(state.partners, partner_id))

    # ------------------------------------------------------------------
    # withdrawals
    # ------------------------------------------------------------------

    def add_withdrawal(self, state: LedgerState, payload: Mapping[str, Any], now: Optional[str] = None) -> LedgerState:
        now = now or now_iso()
        partner_id = payload.get("partner_id")
        amount = money(payload.get("amount"), "Withdrawal amount", allow_zero=False)
        partner = state.partner(partner_id)
        if partner is None:
            raise NotFoundError("Partner not found.")

        withdrawal_id, metadata = next_id(state.metadata, "withdrawal")
        withdrawal = Withdrawal(
            id=withdrawal_id,
            partner_id=partner.id,
            amount=amount,
            date=payload.get("date") or now[:10],
            notes=payload.get("notes"),
            created_at=now,
        )
        account = partner.capital_account
        account = with_equity(replace(account, total_withdrawn=account.total_withdrawn + amount))
        log.info("withdrawal_created withdrawal_id=%s partner_id=%s amount=%.2f", withdrawal.id, partner.id, amount)
        return replace(
            state,
            metadata=metadata,
            withdrawals=state.withdrawals + (withdrawal,),
            partners=replace_by_id(state.partners, replace(partner, capital_account=account)),
        )

    def delete_withdrawal(self, state: LedgerState, withdrawal_id: str) -> LedgerState:
        withdrawal = state.withdrawal(withdrawal_id)
        if withdrawal is None:
            raise NotFoundError("Withdrawal not found.")

        partners = state.partners
        partner = state.partner(withdrawal.partner_id)
        if partner is not None:
            account = partner.capital_account
            account = with_equity(replace(account, total_withdrawn=max(0.0, account.total_withdrawn - withdrawal.amount)))
            partners = replace_by_id(partners, replace(partner, capital_account=account))
        log.info("withdrawal_deleted withdrawal_id=%s partner_id=%s", withdrawal.id, withdrawal.partner_id)
        return replace(state, withdrawals=remove_by_id(state.withdrawals, withdrawal_id), partners=partners)

    # ------------------------------------------------------------------
    # cash injections
    # ------------------------------------------------------------------

    def add_cash_injection(self, state: LedgerState, payload: Mapping[str, Any], now: Optional[str] = None) -> LedgerState:
        now = now or now_iso()
        injection_id, metadata = next_id(state.metadata, "cash_injection")
        injection = self._build_injection(state, injection_id, payload, created_at=now, default_date=now[:10])
        state = replace(state, metadata=metadata, cash_injections=state.cash_injections + (injection,))
        log.info(
            "cash_injection_created injection_id=%s type=%s amount=%.2f partner_id=%s",
            injection.id, injection.type, injection.amount, injection.partner_id,
        )
        return self._credit(state, injection)

    def update_cash_injection(self, state: LedgerState, injection_id: str, data: Mapping[str, Any]) -> LedgerState:
        existing = state.cash_injection(injection_id)
        if existing is None:
            raise NotFoundError("Cash injection not found.")
        unknown = set(data) - set(self.INJECTION_EDITABLE)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        merged = {
            "type": existing.type,
            "amount": existing.amount,
            "partner_id": existing.partner_id,
            "date": existing.date,
            "description": existing.description,
            **dict(data),
        }
        state = self._debit(state, existing)
        updated = self._build_injection(state, injection_id, merged, created_at=existing.created_at, default_date=existing.date)
        state = replace(state, cash_injections=replace_by_id(state.cash_injections, updated))
        return self._credit(state, updated)

    def delete_cash_injection(self, state: LedgerState, injection_id: str) -> LedgerState:
        existing = state.cash_injection(injection_id)
        if existing is None:
            raise NotFoundError("Cash injection not found.")
        state = self._debit(state, existing)
        log.info("cash_injection_deleted injection_id=%s", injection_id)
        return replace(state, cash_injections=remove_by_id(state.cash_injections, injection_id))

    def _build_injection(
        self,
        state: LedgerState,
        injection_id: str,
        payload: Mapping[str, Any],
        created_at: Optional[str],
        default_date: Optional[str],
    ) -> CashInjection:
        kind = payload.get("type")
        if kind not in INJECTION_TYPES:
            raise ValidationError(f"Unknown cash injection type: {kind}")
        amount = money(payload.get("amount"), "Injection amount", allow_zero=False)
        partner_id = payload.get("partner_id") or None

        injection = CashInjection(
            id=injection_id,
            type=kind,
            amount=amount,
            partner_id=partner_id,
            date=payload.get("date") or default_date,
            description=payload.get("description"),
            created_at=created_at,
        )
        if injection.is_capital_contribution:
            if partner_id is None:
                raise ValidationError("A capital contribution needs a partner.")
            if state.partner(partner_id) is None:
                raise NotFoundError("Partner not found.")
        return injection

    def _credit(self, state: LedgerState, injection: CashInjection) -> LedgerState:
        if not injection.is_capital_contribution:
            return state
        partner = state.partner(injection.partner_id)
        account = partner.capital_account
        account = replace(
            account,
            initial_investment=account.initial_investment + injection.amount,
            additional_contributions=account.additional_contributions
            + (Contribution(injection_id=injection.id, amount=injection.amount, date=injection.date),),
        )
        return replace(
            state,
            partners=replace_by_id(state.partners, replace(partner, capital_account=with_equity(account))),
        )

    def _debit(self, state: LedgerState, injection: CashInjection) -> LedgerState:
        if not injection.is_capital_contribution:
            return state
        partner = state.partner(injection.partner_id)
        if partner is None:
            return state
        account = partner.capital_account
        account = replace(
            account,
            initial_investment=account.initial_investment - injection.amount,
            additional_contributions=tuple(
                c for c in account.additional_contributions if c.injection_id != injection.id
            ),
        )
        return replace(
            state,
            partners=replace_by_id(state.partners, replace(partner, capital_account=with_equity(account))),
        )
