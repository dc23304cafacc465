from __future__ import annotations

from dataclasses import replace
from typing import Any, Mapping, Optional

from csl.config import LedgerSettings
from csl.domain.errors import IntegrityGuardError, NotFoundError, ValidationError
from csl.domain.ids import next_id
from csl.domain.models import LedgerState, Product
from csl.services._crud import money, now_iso, patch, remove_by_id, replace_by_id, whole


class InventoryService:
    EDITABLE = ("name", "category", "bag_weight", "cost_per_kg", "current_stock")

    def __init__(self, settings: LedgerSettings):
        self.settings = settings

    def add_product(self, state: LedgerState, payload: Mapping[str, Any], now: Optional[str] = None) -> LedgerState:
        now = now or now_iso()
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValidationError("Product name is required.")
        if any(p.name.lower() == name.lower() for p in state.products):
            raise ValidationError(f"Product already exists: {name}")

        product_id, metadata = next_id(state.metadata, "product")
        product = Product(
            id=product_id,
            name=name,
            category=str(payload.get("category") or "").strip(),
            bag_weight=money(payload.get("bag_weight") or self.settings.default_bag_weight, "Bag weight", allow_zero=False),
            cost_per_kg=money(payload.get("cost_per_kg", 0) or 0, "Cost per kg"),
            current_stock=whole(payload.get("current_stock", 0) or 0, "Stock", minimum=0),
            created_at=now,
        )
        return replace(state, metadata=metadata, products=state.products + (product,))

    def update_product(self, state: LedgerState, product_id: int, data: Mapping[str, Any]) -> LedgerState:
        product = state.product(product_id)
        if product is None:
            raise NotFoundError("Product not found.")

        data = dict(data)
        if "name" in data:
            data["name"] = str(data["name"] or "").strip()
            if not data["name"]:
                raise ValidationError("Product name is required.")
        if "bag_weight" in data:
            data["bag_weight"] = money(data["bag_weight"], "Bag weight", allow_zero=False)
        if "cost_per_kg" in data:
            data["cost_per_kg"] = money(data["cost_per_kg"], "Cost per kg")
        if "current_stock" in data:
            data["current_stock"] = whole(data["current_stock"], "Stock", minimum=0)

        updated = patch(product, data, self.EDITABLE)
        return replace(state, products=replace_by_id(state.products, updated))

    def delete_product(self, state: LedgerState, product_id: int) -> LedgerState:
        product = state.product(product_id)
        if product is None:
            raise NotFoundError("Product not found.")
        if state.has_sales_for(product_id):
            raise IntegrityGuardError("Cannot delete product with sales history", offending=[product.name])
        containers = [c.id for c in state.containers if c.line_for(product_id) is not None]
        if containers:
            raise IntegrityGuardError(
                f"Cannot delete product received in containers: {', '.join(containers)}",
                offending=containers,
            )
        return replace(state, products=remove_by_id(state.products, product_id))
