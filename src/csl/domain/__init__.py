from .models import (
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
from .commands import Action
from .errors import (
    AppError,
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    IntegrityGuardError,
    PersistenceError,
)

__all__ = [
    "Action",
    "CapitalAccount",
    "CashFlow",
    "CashInjection",
    "Container",
    "ContainerLine",
    "Contribution",
    "Expense",
    "LedgerState",
    "Metadata",
    "NextIds",
    "Partner",
    "PriceAdjustment",
    "Product",
    "Sale",
    "Withdrawal",
    "AppError",
    "ValidationError",
    "NotFoundError",
    "InsufficientStockError",
    "IntegrityGuardError",
    "PersistenceError",
]
