from .costing_service import CostingService
from .sales_service import SalesService
from .inventory_service import InventoryService
from .capital_service import CapitalService
from .expense_service import ExpenseService
from .reporting_service import ReportingService
from .ledger_service import CommandHandler, LedgerStore, SaveResult, apply_action

__all__ = [
    "CostingService",
    "SalesService",
    "InventoryService",
    "CapitalService",
    "ExpenseService",
    "ReportingService",
    "CommandHandler",
    "LedgerStore",
    "SaveResult",
    "apply_action",
]
