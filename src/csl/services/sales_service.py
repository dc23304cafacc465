from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping, Optional

from csl.config import LedgerSettings
from csl.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from csl.domain.ids import next_id
from csl.domain.models import Expense, LedgerState, Sale
from csl.services._crud import money, now_iso, remove_by_id, replace_by_id, whole

log = logging.getLogger("csl.sales")


class SalesService:
    def __init__(self, settings: LedgerSettings):
        self.settings = settings

    def add_sale(self, state: LedgerState, payload: Mapping[str, Any], now: Optional[str] = None) -> LedgerState:
        """
        payload: {product_id, quantity, price_per_unit, date?, customer?}

        The sale freezes the product's landed cost per bag at this instant:
          cost_per_unit = cost_per_kg * bag_weight
        """
        now = now or now_iso()
        product_id = whole(payload.get("product_id"), "Product id")
        qty = whole(payload.get("quantity"), "Quantity")
        price = money(payload.get("price_per_unit"), "Price per unit")

        product = state.product(product_id)
        if product is None:
            raise NotFoundError("Product not found.")
        if qty > product.current_stock:
            raise InsufficientStockError(
                f"Insufficient stock for this sale. {product.name} available: {product.current_stock}"
            )

        cost_per_unit = product.cost_per_bag
        sale_id, metadata = next_id(state.metadata, "sale")
        sale = Sale(
            id=sale_id,
            product_id=product.id,
            product_name=product.name,
            quantity=qty,
            price_per_unit=price,
            cost_per_unit=cost_per_unit,
            total_amount=price * qty,
            profit=(price - cost_per_unit) * qty,
            date=payload.get("date") or now[:10],
            customer=payload.get("customer"),
            created_at=now,
        )
        updated = replace(product, current_stock=product.current_stock - qty)
        log.info(
            "sale_created sale_id=%s product_id=%s qty=%s price=%.2f cost=%.2f",
            sale.id, product.id, qty, price, cost_per_unit,
        )
        return replace(
            state,
            metadata=metadata,
            sales=state.sales + (sale,),
            products=replace_by_id(state.products, updated),
        )

    def delete_sale(self, state: LedgerState, sale_id: int) -> LedgerState:
        sale = state.sale(sale_id)
        if sale is None:
            raise NotFoundError("Sale not found.")

        products = state.products
        product = state.product(sale.product_id)
        if product is not None:
            # Cost stays as-is; only the bags come back.
            products = replace_by_id(products, replace(product, current_stock=product.current_stock + sale.quantity))
        log.info("sale_deleted sale_id=%s product_id=%s qty=%s", sale.id, sale.product_id, sale.quantity)
        return replace(state, sales=remove_by_id(state.sales, sale_id), products=products)

    def destroy_product(self, state: LedgerState, payload: Mapping[str, Any], now: Optional[str] = None) -> LedgerState:
        """Write off damaged or lost bags and book their landed cost as a loss expense."""
        now = now or now_iso()
        product_id = whole(payload.get("product_id"), "Product id")
        qty = whole(payload.get("quantity"), "Quantity")
        reason = str(payload.get("reason") or "").strip()
        if not reason:
            raise ValidationError("A reason is required to destroy stock.")

        product = state.product(product_id)
        if product is None:
            raise NotFoundError("Product not found.")
        if qty > product.current_stock:
            raise InsufficientStockError(f"Not enough stock. Available: {product.current_stock}")

        expense_id, metadata = next_id(state.metadata, "expense")
        expense = Expense(
            id=expense_id,
            category=self.settings.loss_category,
            amount=qty * product.cost_per_bag,
            date=payload.get("date") or now[:10],
            description=f"Destroyed {qty} bag(s) of {product.name} - {reason}",
            notes=payload.get("notes") or reason,
            product_id=product.id,
            quantity=qty,
            created_at=now,
        )
        updated = replace(product, current_stock=product.current_stock - qty)
        log.warning("stock_destroyed product_id=%s qty=%s loss=%.2f reason=%s", product.id, qty, expense.amount, reason)
        return replace(
            state,
            metadata=metadata,
            products=replace_by_id(state.products, updated),
            expenses=state.expenses + (expense,),
        )
