from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from csl.domain.models import Expense, LedgerState, Sale
from csl.services._crud import money


@dataclass(frozen=True)
class ProductSales:
    product_id: int
    product_name: str
    quantity: int = 0
    revenue: float = 0.0
    profit: float = 0.0
    sales_count: int = 0


@dataclass(frozen=True)
class ProfitLossReport:
    start_date: Optional[str]
    end_date: Optional[str]
    sales_count: int
    expenses_count: int
    revenue: float
    cogs: float
    gross_profit: float
    total_expenses: float
    net_profit: float
    gross_margin: float
    net_margin: float
    average_sale_amount: float
    average_expense_amount: float
    inventory_value: float
    expenses_by_category: dict[str, float] = field(default_factory=dict)
    sales_by_product: tuple[ProductSales, ...] = ()


@dataclass(frozen=True)
class CashPosition:
    total_container_cost: float
    total_sales_revenue: float
    total_expenses: float
    current_cash_position: float


@dataclass(frozen=True)
class PartnerDistribution:
    partner_id: str
    partner_name: str
    ownership_percent: float
    share: float
    current_equity: float
    after_distribution: float


def _in_window(date: Optional[str], start: Optional[str], end: Optional[str]) -> bool:
    if not start and not end:
        return True
    if not date:
        return False
    day = date[:10]
    return (not start or day >= start) and (not end or day <= end)


def inventory_value(state: LedgerState) -> float:
    return sum(p.current_stock * p.cost_per_bag for p in state.products)


def profit_loss(state: LedgerState, start: Optional[str] = None, end: Optional[str] = None) -> ProfitLossReport:
    """P&L over sales and expenses dated within [start, end] (ISO dates, inclusive).

    COGS uses the cost frozen on each sale, so later price adjustments do not
    restate past periods. Inventory value is the current position, not windowed.
    """
    sales = [s for s in state.sales if _in_window(s.date, start, end)]
    expenses = [e for e in state.expenses if _in_window(e.date, start, end)]

    revenue = sum(s.total_amount for s in sales)
    cogs = sum(s.cost_per_unit * s.quantity for s in sales)
    gross = sum(s.profit for s in sales)
    total_expenses = sum(e.amount for e in expenses)
    net = gross - total_expenses

    by_category: dict[str, float] = defaultdict(float)
    for e in expenses:
        by_category[e.category or "Miscellaneous"] += e.amount

    return ProfitLossReport(
        start_date=start,
        end_date=end,
        sales_count=len(sales),
        expenses_count=len(expenses),
        revenue=revenue,
        cogs=cogs,
        gross_profit=gross,
        total_expenses=total_expenses,
        net_profit=net,
        gross_margin=(gross / revenue * 100) if revenue > 0 else 0.0,
        net_margin=(net / revenue * 100) if revenue > 0 else 0.0,
        average_sale_amount=revenue / len(sales) if sales else 0.0,
        average_expense_amount=total_expenses / len(expenses) if expenses else 0.0,
        inventory_value=inventory_value(state),
        expenses_by_category=dict(by_category),
        sales_by_product=_sales_by_product(sales),
    )


def _sales_by_product(sales: Iterable[Sale]) -> tuple[ProductSales, ...]:
    rows: dict[int, ProductSales] = {}
    for s in sales:
        row = rows.get(s.product_id) or ProductSales(product_id=s.product_id, product_name=s.product_name)
        rows[s.product_id] = ProductSales(
            product_id=row.product_id,
            product_name=row.product_name,
            quantity=row.quantity + s.quantity,
            revenue=row.revenue + s.total_amount,
            profit=row.profit + s.profit,
            sales_count=row.sales_count + 1,
        )
    return tuple(sorted(rows.values(), key=lambda r: r.revenue, reverse=True))


def cash_position(state: LedgerState) -> CashPosition:
    containers = sum(c.total_investment for c in state.containers)
    revenue = sum(s.total_amount for s in state.sales)
    expenses = sum(e.amount for e in state.expenses)
    return CashPosition(
        total_container_cost=containers,
        total_sales_revenue=revenue,
        total_expenses=expenses,
        current_cash_position=revenue - expenses - containers,
    )


def distribution(state: LedgerState, amount: float) -> tuple[PartnerDistribution, ...]:
    """Split ``amount`` across partners by ownership percent.

    Nothing is booked; ``after_distribution`` is the partner's stored equity
    minus their share, for sizing a payout before recording withdrawals.
    """
    amount = money(amount, "Distribution amount")
    rows = []
    for p in state.partners:
        share = amount * p.ownership_percent / 100
        equity = p.capital_account.current_equity
        rows.append(PartnerDistribution(
            partner_id=p.id,
            partner_name=p.name,
            ownership_percent=p.ownership_percent,
            share=share,
            current_equity=equity,
            after_distribution=equity - share,
        ))
    return tuple(rows)


class ReportingService:
    def __init__(self, state_provider: Callable[[], LedgerState]):
        self.state_provider = state_provider

    def profit_loss(self, start: Optional[str] = None, end: Optional[str] = None) -> ProfitLossReport:
        return profit_loss(self.state_provider(), start, end)

    def inventory_value(self) -> float:
        return inventory_value(self.state_provider())

    def cash_position(self) -> CashPosition:
        return cash_position(self.state_provider())

    def distribution(self, amount: float) -> tuple[PartnerDistribution, ...]:
        return distribution(self.state_provider(), amount)

    def export_profit_loss_excel(self, path: str, start: Optional[str] = None, end: Optional[str] = None) -> None:
        state = self.state_provider()
        report = profit_loss(state, start, end)
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, end_row: int, end_col: int):
            ref = f"A{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Profit & Loss"
        ws["A1"].font = Font(bold=True, size=14)
        ws["A3"] = "Window"
        ws["B3"] = f"{start or 'beginning'}  ->  {end or 'today'}"

        rows = [
            ("Sales count", report.sales_count, False),
            ("Revenue", report.revenue, True),
            ("Cost of goods sold", report.cogs, True),
            ("Gross profit", report.gross_profit, True),
            ("Expenses", report.total_expenses, True),
            ("Net profit", report.net_profit, True),
            ("Gross margin %", report.gross_margin, True),
            ("Net margin %", report.net_margin, True),
            ("Inventory value", report.inventory_value, True),
        ]
        for i, (label, val, is_money) in enumerate(rows):
            r = 5 + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if is_money:
                money(ws[f"B{r}"])
        set_widths(ws, {"A": 24, "B": 30})

        # -------- 2) Sales Detail --------
        ws2 = wb.create_sheet("Sales Detail")
        ws2.append(["Sale ID", "Date", "Product", "Qty", "Price/Bag", "Cost/Bag", "Revenue", "Profit"])
        bold_row(ws2, 1)
        for s in state.sales:
            if not _in_window(s.date, start, end):
                continue
            ws2.append([s.id, s.date, s.product_name, s.quantity, s.price_per_unit, s.cost_per_unit,
                        s.total_amount, s.profit])
            for col in "EFGH":
                money(ws2[f"{col}{ws2.max_row}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 10, "B": 14, "C": 30, "D": 6, "E": 12, "F": 12, "G": 14, "H": 14})
        if ws2.max_row >= 2:
            add_table(ws2, "SalesDetail", 1, ws2.max_row, 8)

        # -------- 3) Expenses --------
        ws3 = wb.create_sheet("Expenses")
        ws3.append(["Expense ID", "Date", "Category", "Description", "Amount"])
        bold_row(ws3, 1)
        windowed: list[Expense] = [e for e in state.expenses if _in_window(e.date, start, end)]
        for e in windowed:
            ws3.append([e.id, e.date, e.category, e.description or "", e.amount])
            money(ws3[f"E{ws3.max_row}"])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 12, "B": 14, "C": 20, "D": 40, "E": 14})
        if ws3.max_row >= 2:
            add_table(ws3, "ExpensesDetail", 1, ws3.max_row, 5)

        wb.save(path)
