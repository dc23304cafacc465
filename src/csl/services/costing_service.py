from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, Mapping, Optional

from csl.config import LedgerSettings
from csl.domain.errors import IntegrityGuardError, NotFoundError, ValidationError
from csl.domain.ids import next_id
from csl.domain.models import Container, ContainerLine, LedgerState, PriceAdjustment, Product
from csl.services._crud import money, now_iso, remove_by_id, replace_by_id, whole

log = logging.getLogger("csl.costing")


def landed_cost_per_kg(product: Product, line: ContainerLine, overhead_per_bag: float) -> float:
    """Weighted-average landed cost of ``product`` after receiving ``line``.

    With no stock on hand the line's own landed cost (goods + overhead share)
    becomes the product cost. Otherwise stock on hand and incoming bags are
    blended by kilogram:

      new_cost = (current_kg*cost + new_kg*line_cost + bags*overhead) / (current_kg+new_kg)
    """
    if product.current_stock == 0:
        return (line.cost_per_kg * line.bag_weight + overhead_per_bag) / line.bag_weight

    current_kg = product.current_stock * line.bag_weight
    new_kg = line.kg
    current_value = current_kg * product.cost_per_kg
    new_value = new_kg * line.cost_per_kg + line.bag_quantity * overhead_per_bag
    return (current_value + new_value) / (current_kg + new_kg)


class CostingService:
    """Turns container line items into product stock and landed cost."""

    EDITABLE = ("name", "arrival_date", "shipping_cost", "customs_cost", "lines")

    def __init__(self, settings: LedgerSettings):
        self.settings = settings

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------

    def add_container(self, state: LedgerState, payload: Mapping[str, Any], now: Optional[str] = None) -> LedgerState:
        now = now or now_iso()
        lines, state = self._parse_lines(state, payload.get("lines"), now)
        shipping = money(payload.get("shipping_cost", 0) or 0, "Shipping cost")
        customs = money(payload.get("customs_cost", 0) or 0, "Customs cost")

        container_id, metadata = next_id(state.metadata, "container")
        container = Container(
            id=container_id,
            name=str(payload.get("name") or container_id).strip(),
            lines=lines,
            shipping_cost=shipping,
            customs_cost=customs,
            arrival_date=payload.get("arrival_date"),
            created_at=now,
        )
        products = self.apply_lines(state.products, container)
        log.info(
            "container_created container_id=%s lines=%s bags=%s overhead_per_bag=%.4f",
            container.id, len(lines), container.total_bags, container.overhead_per_bag,
        )
        return replace(
            state,
            metadata=metadata,
            containers=state.containers + (container,),
            products=products,
        )

    def update_container(
        self,
        state: LedgerState,
        container_id: str,
        data: Mapping[str, Any],
        now: Optional[str] = None,
    ) -> LedgerState:
        now = now or now_iso()
        existing = state.container(container_id)
        if existing is None:
            raise NotFoundError("Container not found")

        unknown = set(data) - set(self.EDITABLE)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        changes: dict[str, Any] = {"updated_at": now}
        if "name" in data:
            changes["name"] = str(data["name"] or existing.id).strip()
        if "arrival_date" in data:
            changes["arrival_date"] = data["arrival_date"]
        if "shipping_cost" in data:
            changes["shipping_cost"] = money(data["shipping_cost"] or 0, "Shipping cost")
        if "customs_cost" in data:
            changes["customs_cost"] = money(data["customs_cost"] or 0, "Customs cost")
        if "lines" in data:
            changes["lines"], state = self._parse_lines(state, data["lines"], now)

        updated = replace(existing, **changes)
        products = state.products
        if self._affects_stock_or_cost(existing, updated):
            products = self.revert_for_edit(products, existing)
            products = self.apply_lines(products, updated)
            log.info(
                "container_reapplied container_id=%s old_bags=%s new_bags=%s",
                container_id, existing.total_bags, updated.total_bags,
            )

        return replace(
            state,
            containers=replace_by_id(state.containers, updated),
            products=products,
        )

    def delete_container(self, state: LedgerState, container_id: str) -> LedgerState:
        container = state.container(container_id)
        if container is None:
            raise NotFoundError("Container not found")

        with_sales = []
        for line in container.lines:
            if state.has_sales_for(line.product_id):
                product = state.product(line.product_id)
                name = product.name if product else f"Product ID {line.product_id}"
                if name not in with_sales:
                    with_sales.append(name)
        if with_sales:
            log.warning("container_delete_blocked container_id=%s reason=sales products=%s", container_id, with_sales)
            raise IntegrityGuardError(
                "Cannot delete container: The following products from this container have sales history: "
                f"{', '.join(with_sales)}. Containers with sold products cannot be deleted to maintain "
                "sales records integrity.",
                offending=with_sales,
            )

        shortages = []
        projected: dict[int, int] = {}
        for line in container.lines:
            product = state.product(line.product_id)
            if product is None:
                continue
            stock = projected.get(product.id, product.current_stock) - line.bag_quantity
            projected[product.id] = stock
            if stock < 0:
                shortages.append(f"{product.name} (shortage: {abs(stock)} bags)")
        if shortages:
            log.warning("container_delete_blocked container_id=%s reason=stock shortages=%s", container_id, shortages)
            raise IntegrityGuardError(
                f"Cannot delete container: Would result in negative stock for {len(shortages)} product(s). "
                + ", ".join(shortages),
                offending=shortages,
            )

        products = tuple(
            replace(p, current_stock=projected[p.id]) if p.id in projected else p
            for p in state.products
        )
        log.info("container_deleted container_id=%s bags=%s", container_id, container.total_bags)
        return replace(
            state,
            containers=remove_by_id(state.containers, container_id),
            products=products,
        )

    def adjust_prices(
        self,
        state: LedgerState,
        container_id: str,
        adjustments: Iterable[Mapping[str, Any]],
        reason: Optional[str] = None,
        now: Optional[str] = None,
    ) -> LedgerState:
        """Correct the recorded cost/kg of container lines after the fact.

        The correction is spread over the product's current cost in proportion
        to the container's share of the kilograms on hand. Sales already
        recorded keep their historical cost.
        """
        now = now or now_iso()
        container = state.container(container_id)
        if container is None:
            raise NotFoundError("Container not found")
        adjustments = list(adjustments or [])
        if not adjustments:
            raise ValidationError("No price adjustments given.")

        metadata = state.metadata
        products = {p.id: p for p in state.products}
        lines = list(container.lines)
        records: list[PriceAdjustment] = []

        for adj in adjustments:
            product_id = whole(adj.get("product_id"), "Product id")
            new_price = money(adj.get("new_cost_per_kg"), "New cost per kg")
            index = next((i for i, line in enumerate(lines) if line.product_id == product_id), None)
            if index is None:
                raise NotFoundError(f"Product {product_id} is not part of container {container_id}")
            product = products.get(product_id)
            if product is None:
                raise NotFoundError("Product not found.")

            line = lines[index]
            if new_price == line.cost_per_kg:
                continue

            container_kg = line.kg
            old_cost = product.cost_per_kg
            if product.current_stock == 0:
                weight = 0.0
                new_cost = 0.0
            else:
                weight = container_kg / (product.current_stock * product.bag_weight)
                new_cost = old_cost + (new_price - line.cost_per_kg) * weight

            record_id, metadata = next_id(metadata, "price_adjustment")
            records.append(PriceAdjustment(
                id=record_id,
                container_id=container_id,
                product_id=product_id,
                old_cost_per_kg=line.cost_per_kg,
                new_cost_per_kg=new_price,
                container_kg=container_kg,
                weight=weight,
                old_product_cost=old_cost,
                new_product_cost=new_cost,
                cost_delta=new_cost - old_cost,
                reason=reason,
                created_at=now,
            ))
            products[product_id] = replace(product, cost_per_kg=new_cost)
            lines[index] = replace(line, cost_per_kg=new_price)
            log.info(
                "price_adjusted container_id=%s product_id=%s old_price=%.4f new_price=%.4f weight=%.4f cost=%.4f->%.4f",
                container_id, product_id, line.cost_per_kg, new_price, weight, old_cost, new_cost,
            )

        if not records:
            return state

        updated = replace(
            container,
            lines=tuple(lines),
            price_adjustments=container.price_adjustments + tuple(r.id for r in records),
            updated_at=now,
        )
        return replace(
            state,
            metadata=metadata,
            containers=replace_by_id(state.containers, updated),
            products=tuple(products[p.id] for p in state.products),
            price_adjustments=state.price_adjustments + tuple(records),
        )

    # ------------------------------------------------------------------
    # cost mechanics
    # ------------------------------------------------------------------

    def apply_lines(self, products: tuple[Product, ...], container: Container) -> tuple[Product, ...]:
        by_id = {p.id: p for p in products}
        overhead = container.overhead_per_bag
        for line in container.lines:
            product = by_id.get(line.product_id)
            if product is None:
                raise NotFoundError(f"Product {line.product_id} not found.")
            by_id[line.product_id] = replace(
                product,
                cost_per_kg=landed_cost_per_kg(product, line, overhead),
                current_stock=product.current_stock + line.bag_quantity,
                bag_weight=line.bag_weight,
            )
        return tuple(by_id[p.id] for p in products)

    def revert_for_edit(self, products: tuple[Product, ...], container: Container) -> tuple[Product, ...]:
        """Take back the stock a container added before it is re-applied.

        Weighted averages cannot be un-blended from a single stored cost, so the
        cost is only reset when the product runs out of stock; otherwise the
        current blended cost is kept as an approximation.

        Stock is floored at 0 rather than rejected. If bags from this container
        were already sold, the re-applied lines are added on top of that floor,
        so shrinking a partly sold container can leave more stock than was
        physically received minus sold (10 received, 6 sold, edited to 5 gives 5).
        """
        by_id = {p.id: p for p in products}
        for line in container.lines:
            product = by_id.get(line.product_id)
            if product is None:
                continue
            stock = max(0, product.current_stock - line.bag_quantity)
            cost = 0.0 if stock == 0 else product.cost_per_kg
            by_id[line.product_id] = replace(product, current_stock=stock, cost_per_kg=cost)
        return tuple(by_id[p.id] for p in products)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _affects_stock_or_cost(old: Container, new: Container) -> bool:
        return (
            old.lines != new.lines
            or old.shipping_cost != new.shipping_cost
            or old.customs_cost != new.customs_cost
        )

    def _parse_lines(
        self,
        state: LedgerState,
        raw_lines: Optional[Iterable[Mapping[str, Any]]],
        now: str,
    ) -> tuple[tuple[ContainerLine, ...], LedgerState]:
        raw_lines = list(raw_lines or [])
        if not raw_lines:
            raise ValidationError("Container must have at least one product line.")

        lines = []
        for raw in raw_lines:
            qty = whole(raw.get("bag_quantity"), "Bag quantity")
            cost = money(raw.get("cost_per_kg"), "Cost per kg")

            if raw.get("product_id") is not None:
                product = state.product(whole(raw["product_id"], "Product id"))
                if product is None:
                    raise NotFoundError(f"Product {raw['product_id']} not found.")
            else:
                product, state = self._product_on_first_reference(state, raw, now)

            weight = raw.get("bag_weight") or product.bag_weight or self.settings.default_bag_weight
            weight = money(weight, "Bag weight", allow_zero=False)
            lines.append(ContainerLine(product_id=product.id, bag_quantity=qty, cost_per_kg=cost, bag_weight=weight))
        return tuple(lines), state

    def _product_on_first_reference(
        self,
        state: LedgerState,
        raw: Mapping[str, Any],
        now: str,
    ) -> tuple[Product, LedgerState]:
        name = str(raw.get("product_name") or "").strip()
        if not name:
            raise ValidationError("Each line needs a product_id or a product_name.")
        for p in state.products:
            if p.name.lower() == name.lower():
                return p, state

        product_id, metadata = next_id(state.metadata, "product")
        weight = money(raw.get("bag_weight") or self.settings.default_bag_weight, "Bag weight", allow_zero=False)
        product = Product(
            id=product_id,
            name=name,
            category=str(raw.get("category") or "").strip(),
            bag_weight=weight,
            created_at=now,
        )
        log.info("product_created_from_container product_id=%s name=%s", product_id, name)
        return product, replace(state, metadata=metadata, products=state.products + (product,))
