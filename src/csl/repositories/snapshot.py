from __future__ import annotations

import math
from dataclasses import fields
from typing import Any, Mapping, Optional

from csl.domain.ids import first_free
from csl.domain.models import (
    CapitalAccount,
    CashFlow,
    CashInjection,
    Container,
    ContainerLine,
    Contribution,
    Expense,
    LedgerState,
    Metadata,
    NextIds,
    Partner,
    PriceAdjustment,
    Product,
    Sale,
    Withdrawal,
)

DEFAULT_BAG_WEIGHT = 25.0

COLLECTIONS = {
    "products": "products",
    "containers": "containers",
    "sales": "sales",
    "expenses": "expenses",
    "partners": "partners",
    "withdrawals": "withdrawals",
    "cashInjections": "cash_injections",
    "cashFlows": "cash_flows",
    "priceAdjustments": "price_adjustments",
}

COUNTER_KEYS = {
    "product": "product",
    "container": "container",
    "sale": "sale",
    "expense": "expense",
    "partner": "partner",
    "withdrawal": "withdrawal",
    "cashFlow": "cash_flow",
    "cashInjection": "cash_injection",
    "priceAdjustment": "price_adjustment",
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _num(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _int_or_raw(value: Any) -> Any:
    """Coerce an id or counter to int when it clearly is one; keep anything else as-is."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def _opt(row: Mapping[str, Any], key: str) -> Optional[Any]:
    value = row.get(key)
    return None if value == "" else value


# ----------------------------------------------------------------------
# snapshot -> state
# ----------------------------------------------------------------------

def _product(row: Mapping[str, Any]) -> Product:
    return Product(
        id=_int_or_raw(row.get("id")),
        name=str(row.get("name") or ""),
        category=str(row.get("category") or ""),
        bag_weight=_num(row.get("bagWeight"), DEFAULT_BAG_WEIGHT) or DEFAULT_BAG_WEIGHT,
        cost_per_kg=_num(row.get("costPerKg", row.get("costPerUnit"))),
        current_stock=int(_num(row.get("currentStock"))),
        created_at=_opt(row, "createdAt"),
    )


def _container(row: Mapping[str, Any]) -> Container:
    lines = tuple(
        ContainerLine(
            product_id=_int_or_raw(line.get("productId")),
            bag_quantity=int(_num(line.get("bagQuantity"))),
            cost_per_kg=_num(line.get("costPerKg", line.get("costPerUnit"))),
            bag_weight=_num(line.get("bagWeight"), DEFAULT_BAG_WEIGHT) or DEFAULT_BAG_WEIGHT,
        )
        for line in row.get("products") or []
    )
    return Container(
        id=row.get("id"),
        name=str(row.get("name") or row.get("id") or ""),
        lines=lines,
        shipping_cost=_num(row.get("shippingCost")),
        customs_cost=_num(row.get("customsCost")),
        arrival_date=_opt(row, "arrivalDate"),
        price_adjustments=tuple(row.get("priceAdjustments") or ()),
        created_at=_opt(row, "createdAt"),
        updated_at=_opt(row, "updatedAt"),
    )


def _sale(row: Mapping[str, Any]) -> Sale:
    qty = int(_num(row.get("quantity")))
    price = _num(row.get("pricePerUnit"))
    cost = _num(row.get("costPerUnit"))
    return Sale(
        id=_int_or_raw(row.get("id")),
        product_id=_int_or_raw(row.get("productId")),
        product_name=str(row.get("productName") or ""),
        quantity=qty,
        price_per_unit=price,
        cost_per_unit=cost,
        total_amount=_num(row.get("totalAmount"), price * qty),
        profit=_num(row.get("profit"), (price - cost) * qty),
        date=_opt(row, "date"),
        customer=_opt(row, "customer"),
        created_at=_opt(row, "createdAt"),
    )


def _expense(row: Mapping[str, Any]) -> Expense:
    return Expense(
        id=_int_or_raw(row.get("id")),
        category=str(row.get("category") or "Miscellaneous"),
        amount=_num(row.get("amount")),
        date=_opt(row, "date"),
        description=_opt(row, "description"),
        notes=_opt(row, "notes"),
        product_id=_int_or_raw(row["productId"]) if row.get("productId") is not None else None,
        quantity=int(_num(row["quantity"])) if row.get("quantity") is not None else None,
        created_at=_opt(row, "createdAt"),
    )


def _capital_account(row: Mapping[str, Any]) -> CapitalAccount:
    raw_contributions = row.get("additionalContributions")
    contributions: tuple[Contribution, ...] = ()
    if isinstance(raw_contributions, list):
        contributions = tuple(
            Contribution(
                injection_id=c.get("injectionId"),
                amount=_num(c.get("amount")),
                date=_opt(c, "date"),
            )
            for c in raw_contributions
            if isinstance(c, Mapping)
        )
    initial = _num(row.get("initialInvestment"))
    profit_share = _num(row.get("profitShare"))
    withdrawn = _num(row.get("totalWithdrawn"))
    equity = row.get("currentEquity")
    return CapitalAccount(
        initial_investment=initial,
        additional_contributions=contributions,
        total_withdrawn=withdrawn,
        profit_share=profit_share,
        current_equity=_num(equity) if equity is not None else initial + profit_share - withdrawn,
    )


def _partner(row: Mapping[str, Any]) -> Partner:
    return Partner(
        id=row.get("id"),
        name=str(row.get("name") or ""),
        capital_account=_capital_account(row.get("capitalAccount") or {}),
        email=_opt(row, "email"),
        phone=_opt(row, "phone"),
        ownership_percent=_num(row.get("ownershipPercent")),
        role=_opt(row, "role"),
        join_date=_opt(row, "joinDate"),
        active=bool(row.get("active", True)),
        created_at=_opt(row, "createdAt"),
    )


def _withdrawal(row: Mapping[str, Any]) -> Withdrawal:
    return Withdrawal(
        id=row.get("id"),
        partner_id=row.get("partnerId"),
        amount=_num(row.get("amount")),
        date=_opt(row, "date"),
        notes=_opt(row, "notes"),
        created_at=_opt(row, "createdAt"),
    )


def _cash_injection(row: Mapping[str, Any]) -> CashInjection:
    return CashInjection(
        id=row.get("id"),
        type=str(row.get("type") or ""),
        amount=_num(row.get("amount")),
        partner_id=_opt(row, "partnerId"),
        date=_opt(row, "date"),
        description=_opt(row, "description"),
        created_at=_opt(row, "createdAt"),
    )


def _cash_flow(row: Mapping[str, Any]) -> CashFlow:
    actual = row.get("actualBalance")
    discrepancy = row.get("discrepancy")
    return CashFlow(
        id=row.get("id"),
        date=str(row.get("date") or ""),
        opening_balance=_num(row.get("openingBalance")),
        cash_in=_num(row.get("cashIn")),
        cash_out=_num(row.get("cashOut")),
        theoretical_balance=_num(row.get("theoreticalBalance")),
        actual_balance=_num(actual) if actual is not None else None,
        discrepancy=_num(discrepancy) if discrepancy is not None else None,
        reconciled=bool(row.get("reconciled", False)),
        reconciled_by=_opt(row, "reconciledBy"),
        reconciled_at=_opt(row, "reconciledAt"),
        notes=_opt(row, "notes"),
    )


def _price_adjustment(row: Mapping[str, Any]) -> PriceAdjustment:
    return PriceAdjustment(
        id=row.get("id"),
        container_id=row.get("containerId"),
        product_id=_int_or_raw(row.get("productId")),
        old_cost_per_kg=_num(row.get("oldCostPerKg")),
        new_cost_per_kg=_num(row.get("newCostPerKg")),
        container_kg=_num(row.get("containerKg")),
        weight=_num(row.get("weight")),
        old_product_cost=_num(row.get("oldProductCost")),
        new_product_cost=_num(row.get("newProductCost")),
        cost_delta=_num(row.get("costDelta")),
        reason=_opt(row, "reason"),
        created_at=_opt(row, "createdAt"),
    )


READERS = {
    "products": _product,
    "containers": _container,
    "sales": _sale,
    "expenses": _expense,
    "partners": _partner,
    "withdrawals": _withdrawal,
    "cashInjections": _cash_injection,
    "cashFlows": _cash_flow,
    "priceAdjustments": _price_adjustment,
}


def from_snapshot(snapshot: Mapping[str, Any]) -> LedgerState:
    """Build a LedgerState from the camelCase snapshot tree.

    Missing collections load as empty. Counters that are missing start after
    the highest existing id; counters that are present but unusable are kept
    verbatim so ``fixMalformedIds`` can repair them.
    """
    loaded = {
        attr: tuple(READERS[key](row) for row in (snapshot.get(key) or []))
        for key, attr in COLLECTIONS.items()
    }

    raw_meta = snapshot.get("metadata") or {}
    raw_ids = raw_meta.get("nextIds") or {}
    counters = {}
    for key, kind in COUNTER_KEYS.items():
        if key in raw_ids:
            counters[kind] = _int_or_raw(raw_ids[key])
        else:
            collection = loaded[_collection_for(kind)]
            counters[kind] = first_free(kind, [item.id for item in collection])

    metadata = Metadata(
        version=str(raw_meta.get("version") or "1.0.0"),
        last_updated=raw_meta.get("lastUpdated"),
        next_ids=NextIds(**counters),
        unsaved_changes=False,
    )
    return LedgerState(metadata=metadata, **loaded)


def _collection_for(kind: str) -> str:
    return {
        "product": "products",
        "container": "containers",
        "sale": "sales",
        "expense": "expenses",
        "partner": "partners",
        "withdrawal": "withdrawals",
        "cash_flow": "cash_flows",
        "cash_injection": "cash_injections",
        "price_adjustment": "price_adjustments",
    }[kind]


# ----------------------------------------------------------------------
# state -> snapshot
# ----------------------------------------------------------------------

def _row(entity) -> dict[str, Any]:
    out = {}
    for f in fields(entity):
        value = getattr(entity, f.name)
        if isinstance(value, tuple):
            value = [_row(v) if hasattr(v, "__dataclass_fields__") else v for v in value]
        elif hasattr(value, "__dataclass_fields__"):
            value = _row(value)
        out[_camel(f.name)] = value
    return out


def _container_row(container: Container) -> dict[str, Any]:
    row = _row(container)
    row["products"] = row.pop("lines")
    row["totalBags"] = container.total_bags
    row["totalInvestment"] = container.total_investment
    return row


def to_snapshot(state: LedgerState) -> dict[str, Any]:
    next_ids = {key: getattr(state.metadata.next_ids, kind) for key, kind in COUNTER_KEYS.items()}
    snapshot: dict[str, Any] = {
        "metadata": {
            "version": state.metadata.version,
            "lastUpdated": state.metadata.last_updated,
            "nextIds": next_ids,
        },
    }
    for key, attr in COLLECTIONS.items():
        items = getattr(state, attr)
        if key == "containers":
            snapshot[key] = [_container_row(c) for c in items]
        else:
            snapshot[key] = [_row(item) for item in items]
    return snapshot


