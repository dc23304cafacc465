from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Mapping

from csl.domain.ids import is_malformed
from csl.repositories.snapshot import COLLECTIONS

log = logging.getLogger("csl.ledger")


@dataclass(frozen=True)
class IntegrityReport:
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    malformed_ids: tuple[str, ...] = field(default=())

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _duplicates(rows: list) -> list:
    # Corrupted ids may collide; fixMalformedIds takes care of those.
    counts = Counter(str(r.get("id")) for r in rows if isinstance(r, Mapping) and not is_malformed(r.get("id")))
    return sorted(k for k, n in counts.items() if n > 1)


# Numeric fields per collection; present values must be finite numbers.
NUMERIC_FIELDS = {
    "products": ("bagWeight", "costPerKg", "costPerUnit", "currentStock"),
    "containers": ("shippingCost", "customsCost"),
    "sales": ("quantity", "pricePerUnit", "costPerUnit", "totalAmount", "profit"),
    "expenses": ("amount", "quantity"),
    "withdrawals": ("amount",),
    "cashInjections": ("amount",),
    "cashFlows": ("openingBalance", "cashIn", "cashOut", "actualBalance"),
}
LINE_FIELDS = ("bagQuantity", "costPerKg", "costPerUnit", "bagWeight")
ACCOUNT_FIELDS = ("initialInvestment", "totalWithdrawn", "profitShare", "currentEquity")


def _finite(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _bad_numbers(row: Mapping[str, Any], names: tuple) -> list:
    return [n for n in names if row.get(n) not in (None, "") and not _finite(row[n])]


def _shape_errors(key: str, row: Mapping[str, Any]) -> list[str]:
    label = f"{key} {row.get('id')}"
    errors = [f"{label}: {n} must be a finite number" for n in _bad_numbers(row, NUMERIC_FIELDS.get(key, ()))]

    if key == "containers":
        lines = row.get("products")
        if lines is not None and not isinstance(lines, list):
            errors.append(f"{label}: products must be an array")
        for i, line in enumerate(lines if isinstance(lines, list) else []):
            if not isinstance(line, Mapping):
                errors.append(f"{label}: line {i + 1} must be an object")
                continue
            errors.extend(f"{label}: line {i + 1} {n} must be a finite number" for n in _bad_numbers(line, LINE_FIELDS))

    if key == "partners":
        account = row.get("capitalAccount")
        if account is not None and not isinstance(account, Mapping):
            errors.append(f"{label}: capitalAccount must be an object")
        elif isinstance(account, Mapping):
            errors.extend(f"{label}: capitalAccount.{n} must be a finite number" for n in _bad_numbers(account, ACCOUNT_FIELDS))
            contributions = account.get("additionalContributions")
            if contributions is not None and not isinstance(contributions, list):
                errors.append(f"{label}: capitalAccount.additionalContributions must be an array")
            elif isinstance(contributions, list):
                errors.extend(
                    f"{label}: contribution amount must be a finite number"
                    for c in contributions
                    if isinstance(c, Mapping) and _bad_numbers(c, ("amount",))
                )
    return errors


def validate_snapshot(data: Any) -> IntegrityReport:
    """Check a snapshot tree before it replaces the ledger.

    Errors block the load. Warnings (dangling partner references, corrupted
    ids) are reported but the snapshot is still usable.
    """
    if not isinstance(data, Mapping):
        return IntegrityReport(errors=("Data must be a valid object",))

    errors: list[str] = []
    warnings: list[str] = []

    for key in COLLECTIONS:
        if key in data and not isinstance(data[key], list):
            errors.append(f"{key} must be an array")

    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, Mapping):
        errors.append("Metadata must be an object")
    elif isinstance(metadata, Mapping) and "nextIds" in metadata and not isinstance(metadata["nextIds"], Mapping):
        errors.append("Metadata nextIds must be an object")

    if errors:
        return IntegrityReport(errors=tuple(errors))

    def rows(key: str) -> list:
        return [r for r in (data.get(key) or []) if isinstance(r, Mapping)]

    for key in COLLECTIONS:
        if len(rows(key)) != len(data.get(key) or []):
            errors.append(f"{key} must only contain objects")
        dupes = _duplicates(rows(key))
        if dupes:
            errors.append(f"Duplicate {key} IDs found: {', '.join(dupes)}")
        for row in rows(key):
            errors.extend(_shape_errors(key, row))

    partner_ids = {p.get("id") for p in rows("partners")}
    dangling = [w for w in rows("withdrawals") if w.get("partnerId") and w.get("partnerId") not in partner_ids]
    if dangling:
        warnings.append(f"{len(dangling)} withdrawals reference non-existent partners")
    dangling = [
        ci for ci in rows("cashInjections")
        if ci.get("type") == "Capital Contribution" and ci.get("partnerId") and ci.get("partnerId") not in partner_ids
    ]
    if dangling:
        warnings.append(f"{len(dangling)} capital contributions reference non-existent partners")

    product_ids = {p.get("id") for p in rows("products")}
    orphan_sales = [s for s in rows("sales") if s.get("productId") not in product_ids]
    if orphan_sales:
        warnings.append(f"{len(orphan_sales)} sales reference non-existent products")

    negative = [
        p.get("name") or str(p.get("id"))
        for p in rows("products")
        if isinstance(p.get("currentStock"), (int, float)) and p["currentStock"] < 0
    ]
    if negative:
        errors.append(f"Negative stock for: {', '.join(negative)}")

    malformed = [
        str(r.get("id"))
        for key in ("partners", "withdrawals", "cashInjections")
        for r in rows(key)
        if is_malformed(r.get("id"))
    ]
    if malformed:
        warnings.append(f"{len(malformed)} malformed ids found; run fixMalformedIds to repair them")

    report = IntegrityReport(errors=tuple(errors), warnings=tuple(warnings), malformed_ids=tuple(malformed))
    for w in report.warnings:
        log.warning("snapshot_warning %s", w)
    return report
