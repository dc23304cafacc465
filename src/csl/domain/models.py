from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional


CAPITAL_CONTRIBUTION = "Capital Contribution"
LOAN = "Loan"
OTHER_INCOME = "Other Income"
OPENING_BALANCE = "Opening Balance"

INJECTION_TYPES = frozenset({CAPITAL_CONTRIBUTION, LOAN, OTHER_INCOME, OPENING_BALANCE})


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    category: str
    bag_weight: float
    cost_per_kg: float = 0.0
    current_stock: int = 0
    created_at: Optional[str] = None

    @property
    def cost_per_bag(self) -> float:
        return self.cost_per_kg * self.bag_weight

    @property
    def stock_kg(self) -> float:
        return self.current_stock * self.bag_weight


@dataclass(frozen=True)
class ContainerLine:
    product_id: int
    bag_quantity: int
    cost_per_kg: float
    bag_weight: float

    @property
    def kg(self) -> float:
        return self.bag_quantity * self.bag_weight


@dataclass(frozen=True)
class Container:
    id: str
    name: str
    lines: tuple[ContainerLine, ...]
    shipping_cost: float = 0.0
    customs_cost: float = 0.0
    arrival_date: Optional[str] = None
    price_adjustments: tuple[str, ...] = ()
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def total_bags(self) -> int:
        return sum(line.bag_quantity for line in self.lines)

    @property
    def overhead_per_bag(self) -> float:
        bags = self.total_bags
        if bags <= 0:
            return 0.0
        return (self.shipping_cost + self.customs_cost) / bags

    @property
    def total_investment(self) -> float:
        goods = sum(line.kg * line.cost_per_kg for line in self.lines)
        return goods + self.shipping_cost + self.customs_cost

    def line_for(self, product_id: int) -> Optional[ContainerLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None


@dataclass(frozen=True)
class Sale:
    id: int
    product_id: int
    product_name: str
    quantity: int
    price_per_unit: float
    cost_per_unit: float
    total_amount: float
    profit: float
    date: Optional[str] = None
    customer: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class Expense:
    id: int
    category: str
    amount: float
    date: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    product_id: Optional[int] = None
    quantity: Optional[int] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class Contribution:
    injection_id: str
    amount: float
    date: Optional[str] = None


@dataclass(frozen=True)
class CapitalAccount:
    initial_investment: float = 0.0
    additional_contributions: tuple[Contribution, ...] = ()
    total_withdrawn: float = 0.0
    profit_share: float = 0.0
    current_equity: float = 0.0


@dataclass(frozen=True)
class Partner:
    id: str
    name: str
    capital_account: CapitalAccount
    email: Optional[str] = None
    phone: Optional[str] = None
    ownership_percent: float = 0.0
    role: Optional[str] = None
    join_date: Optional[str] = None
    active: bool = True
    created_at: Optional[str] = None


@dataclass(frozen=True)
class Withdrawal:
    id: str
    partner_id: str
    amount: float
    date: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class CashInjection:
    id: str
    type: str
    amount: float
    partner_id: Optional[str] = None
    date: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def is_capital_contribution(self) -> bool:
        return self.type == CAPITAL_CONTRIBUTION


@dataclass(frozen=True)
class CashFlow:
    id: str
    date: str
    opening_balance: float
    cash_in: float
    cash_out: float
    theoretical_balance: float
    actual_balance: Optional[float] = None
    discrepancy: Optional[float] = None
    reconciled: bool = False
    reconciled_by: Optional[str] = None
    reconciled_at: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PriceAdjustment:
    id: str
    container_id: str
    product_id: int
    old_cost_per_kg: float
    new_cost_per_kg: float
    container_kg: float
    weight: float
    old_product_cost: float
    new_product_cost: float
    cost_delta: float
    reason: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class NextIds:
    product: int = 1
    container: int = 1
    sale: int = 1
    expense: int = 1
    partner: int = 1
    withdrawal: int = 1
    cash_flow: int = 1
    cash_injection: int = 1
    price_adjustment: int = 1


@dataclass(frozen=True)
class Metadata:
    version: str = "1.0.0"
    last_updated: Optional[str] = None
    next_ids: NextIds = field(default_factory=NextIds)
    unsaved_changes: bool = False


@dataclass(frozen=True)
class LedgerState:
    metadata: Metadata = field(default_factory=Metadata)
    products: tuple[Product, ...] = ()
    containers: tuple[Container, ...] = ()
    sales: tuple[Sale, ...] = ()
    expenses: tuple[Expense, ...] = ()
    partners: tuple[Partner, ...] = ()
    withdrawals: tuple[Withdrawal, ...] = ()
    cash_injections: tuple[CashInjection, ...] = ()
    cash_flows: tuple[CashFlow, ...] = ()
    price_adjustments: tuple[PriceAdjustment, ...] = ()
    error: Optional[str] = None

    def product(self, product_id: int) -> Optional[Product]:
        for p in self.products:
            if p.id == product_id:
                return p
        return None

    def container(self, container_id: str) -> Optional[Container]:
        for c in self.containers:
            if c.id == container_id:
                return c
        return None

    def sale(self, sale_id: int) -> Optional[Sale]:
        for s in self.sales:
            if s.id == sale_id:
                return s
        return None

    def partner(self, partner_id: str) -> Optional[Partner]:
        for p in self.partners:
            if p.id == partner_id:
                return p
        return None

    def withdrawal(self, withdrawal_id: str) -> Optional[Withdrawal]:
        for w in self.withdrawals:
            if w.id == withdrawal_id:
                return w
        return None

    def cash_injection(self, injection_id: str) -> Optional[CashInjection]:
        for ci in self.cash_injections:
            if ci.id == injection_id:
                return ci
        return None

    def has_sales_for(self, product_id: int) -> bool:
        return any(s.product_id == product_id for s in self.sales)
