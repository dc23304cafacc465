from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


ADD_CONTAINER = "addContainer"
UPDATE_CONTAINER = "updateContainer"
DELETE_CONTAINER = "deleteContainer"
ADJUST_CONTAINER_PRICES = "adjustContainerPrices"

ADD_PRODUCT = "addProduct"
UPDATE_PRODUCT = "updateProduct"
DELETE_PRODUCT = "deleteProduct"
DESTROY_PRODUCT = "destroyProduct"

ADD_SALE = "addSale"
DELETE_SALE = "deleteSale"

ADD_EXPENSE = "addExpense"
UPDATE_EXPENSE = "updateExpense"
DELETE_EXPENSE = "deleteExpense"

ADD_PARTNER = "addPartner"
UPDATE_PARTNER = "updatePartner"
DELETE_PARTNER = "deletePartner"

ADD_WITHDRAWAL = "addWithdrawal"
DELETE_WITHDRAWAL = "deleteWithdrawal"

ADD_CASH_INJECTION = "addCashInjection"
UPDATE_CASH_INJECTION = "updateCashInjection"
DELETE_CASH_INJECTION = "deleteCashInjection"

ADD_CASH_FLOW = "addCashFlow"
UPDATE_CASH_FLOW = "updateCashFlow"
DELETE_CASH_FLOW = "deleteCashFlow"

FIX_MALFORMED_IDS = "fixMalformedIds"
LOAD_DATA = "loadData"
MARK_SAVED = "markSaved"
CLEAR_ERROR = "clearError"

# Commands whose committed state is pushed to the save collaborator right away.
SAVE_TRIGGERING_KINDS = frozenset({
    ADD_PARTNER,
    UPDATE_PARTNER,
    DELETE_PARTNER,
    ADD_WITHDRAWAL,
    DELETE_WITHDRAWAL,
    ADD_CASH_INJECTION,
    UPDATE_CASH_INJECTION,
    DELETE_CASH_INJECTION,
})

# Bookkeeping commands that do not count as a data change.
NON_MUTATING_KINDS = frozenset({MARK_SAVED, CLEAR_ERROR, LOAD_DATA})


@dataclass(frozen=True)
class Action:
    kind: str
    payload: Any = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.kind:
            raise ValueError("Action kind must be non-empty.")
