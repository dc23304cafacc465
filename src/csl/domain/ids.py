"""Identifier allocation and repair.

Every new entity id comes from ``Metadata.next_ids``. Integer kinds (product,
sale, expense) use the bare counter value; the others carry a short prefix,
e.g. ``C3`` for the third container.
"""
from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Optional, Union

from csl.domain.errors import ValidationError
from csl.domain.models import LedgerState, Metadata, NextIds

log = logging.getLogger("csl.ledger")

EntityId = Union[int, str]

PREFIXES: dict[str, Optional[str]] = {
    "product": None,
    "sale": None,
    "expense": None,
    "container": "C",
    "partner": "P",
    "withdrawal": "W",
    "cash_flow": "CF",
    "cash_injection": "CI",
    "price_adjustment": "PA",
}

CORRUPTION_MARKERS = ("undefined", "NaN", "null")


def _valid_counter(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def make_id(kind: str, n: int) -> EntityId:
    if kind not in PREFIXES:
        raise ValueError(f"Unknown id kind: {kind}")
    if not _valid_counter(n):
        raise ValueError(f"Id sequence for {kind} must be a positive integer. Received: {n!r}")
    prefix = PREFIXES[kind]
    return n if prefix is None else f"{prefix}{n}"


def next_id(metadata: Metadata, kind: str) -> tuple[EntityId, Metadata]:
    n = getattr(metadata.next_ids, kind)
    try:
        value = make_id(kind, n)
    except ValueError as e:
        raise ValidationError(f"{e}. Run fixMalformedIds to repair the id counters.") from e
    ids = replace(metadata.next_ids, **{kind: n + 1})
    return value, replace(metadata, next_ids=ids)


def id_pattern(kind: str) -> re.Pattern:
    prefix = PREFIXES[kind]
    return re.compile(rf"^{re.escape(prefix or '')}([1-9]\d*)$")


def is_malformed(value: object) -> bool:
    if value is None:
        return True
    text = str(value)
    if not text.strip():
        return True
    return any(marker in text for marker in CORRUPTION_MARKERS)


def sequence_of(kind: str, value: object) -> Optional[int]:
    m = id_pattern(kind).match(str(value))
    return int(m.group(1)) if m else None


def first_free(kind: str, existing: list) -> int:
    return max((sequence_of(kind, v) or 0 for v in existing), default=0) + 1


def _repaired_counter(kind: str, current: object, existing: list) -> int:
    free = first_free(kind, existing)
    if _valid_counter(current):
        return max(int(current), free)
    return free


def repair_ids(state: LedgerState) -> LedgerState:
    """Reassign clean ids to partners, withdrawals and cash injections whose ids
    were built from a missing value (``PNaN``, ``Wundefined``...).

    Well-formed ids are never touched and every reference to a repaired id is
    rewritten. Returns ``state`` itself when nothing needed fixing.
    """
    counters = state.metadata.next_ids
    fixed_counters = {}
    for kind in PREFIXES:
        existing = _existing_ids(state, kind)
        fixed_counters[kind] = _repaired_counter(kind, getattr(counters, kind), existing)
    metadata = replace(state.metadata, next_ids=NextIds(**fixed_counters))

    partner_map: dict[str, str] = {}
    partners = []
    for p in state.partners:
        if is_malformed(p.id):
            new_id, metadata = next_id(metadata, "partner")
            # Duplicate corrupted ids cannot be told apart; references follow the first.
            partner_map.setdefault(str(p.id), new_id)
            p = replace(p, id=new_id)
        partners.append(p)

    injection_map: dict[str, str] = {}
    injections = []
    for ci in state.cash_injections:
        if is_malformed(ci.id):
            new_id, metadata = next_id(metadata, "cash_injection")
            injection_map.setdefault(str(ci.id), new_id)
            ci = replace(ci, id=new_id)
        if ci.partner_id is not None and str(ci.partner_id) in partner_map:
            ci = replace(ci, partner_id=partner_map[str(ci.partner_id)])
        injections.append(ci)

    withdrawals = []
    repaired_withdrawals = 0
    for w in state.withdrawals:
        if is_malformed(w.id):
            new_id, metadata = next_id(metadata, "withdrawal")
            w = replace(w, id=new_id)
            repaired_withdrawals += 1
        if w.partner_id is not None and str(w.partner_id) in partner_map:
            w = replace(w, partner_id=partner_map[str(w.partner_id)])
        withdrawals.append(w)

    if injection_map:
        partners = [_remap_contributions(p, injection_map) for p in partners]

    if (
        not partner_map
        and not injection_map
        and not repaired_withdrawals
        and metadata.next_ids == state.metadata.next_ids
    ):
        return state

    log.warning(
        "ids_repaired partners=%s withdrawals=%s cash_injections=%s",
        len(partner_map), repaired_withdrawals, len(injection_map),
    )
    return replace(
        state,
        metadata=metadata,
        partners=tuple(partners),
        withdrawals=tuple(withdrawals),
        cash_injections=tuple(injections),
    )


def _remap_contributions(partner, injection_map: dict[str, str]):
    account = partner.capital_account
    contributions = tuple(
        replace(c, injection_id=injection_map[str(c.injection_id)])
        if c.injection_id is not None and str(c.injection_id) in injection_map
        else c
        for c in account.additional_contributions
    )
    if contributions == account.additional_contributions:
        return partner
    return replace(partner, capital_account=replace(account, additional_contributions=contributions))


def _existing_ids(state: LedgerState, kind: str) -> list:
    collections = {
        "product": state.products,
        "sale": state.sales,
        "expense": state.expenses,
        "container": state.containers,
        "partner": state.partners,
        "withdrawal": state.withdrawals,
        "cash_flow": state.cash_flows,
        "cash_injection": state.cash_injections,
        "price_adjustment": state.price_adjustments,
    }
    return [item.id for item in collections[kind]]
