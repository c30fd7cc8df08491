"""Dashboard aggregation over operations and transfers.

Everything is recomputed from the store on every call. The recent feed merges
the latest operations and transfers into one list ordered by business date;
entries sharing a date are ordered by origin (operations first) and then by
id, newest first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, ClassVar, Iterable, Protocol, Union

from ..schemas import Direction

RECENT_PER_SOURCE = 5
RECENT_LIMIT = 8


class LedgerReader(Protocol):
    def ledger_totals(self) -> dict[str, Any]: ...

    def category_totals(self) -> list[dict[str, Any]]: ...

    def person_totals(self) -> list[dict[str, Any]]: ...

    def property_totals(self) -> list[dict[str, Any]]: ...

    def recent_operations(self, limit: int) -> list[dict[str, Any]]: ...

    def recent_transfers(self, limit: int) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class OperationActivity:
    origin: ClassVar[str] = "op"
    id: int
    date: str
    amount: float
    type: Direction
    details: str | None

    @property
    def direction(self) -> Direction:
        return self.type


@dataclass(frozen=True)
class TransferActivity:
    origin: ClassVar[str] = "tra"
    id: int
    date: str
    amount: float
    details: str | None

    @property
    def direction(self) -> Direction:
        return Direction.outflow


Activity = Union[OperationActivity, TransferActivity]


def _business_date(activity: Activity) -> date:
    try:
        return date.fromisoformat(activity.date[:10])
    except (TypeError, ValueError):
        return date.min


def merge_recent(
    operations: Iterable[OperationActivity],
    transfers: Iterable[TransferActivity],
    limit: int = RECENT_LIMIT,
) -> list[Activity]:
    merged: list[Activity] = [*operations, *transfers]
    # Stable sorts, least significant key first.
    merged.sort(key=lambda a: a.id, reverse=True)
    merged.sort(key=lambda a: a.origin)
    merged.sort(key=_business_date, reverse=True)
    return merged[:limit]


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def compute_balance(total_in: Any, total_out: Any, total_transfers: Any) -> float:
    return float(_money(total_in) - (_money(total_out) + _money(total_transfers)))


def _sorted_desc(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(rows, key=lambda row: _money(row["total"]), reverse=True)


def build_stats(reader: LedgerReader) -> dict[str, Any]:
    totals = reader.ledger_totals()
    total_in = float(totals.get("total_in") or 0)
    total_out = float(totals.get("total_out") or 0)
    total_transfers = float(totals.get("total_transfers") or 0)

    operations = [
        OperationActivity(
            id=row["id"],
            date=row["date"],
            amount=float(row["amount"] or 0),
            type=Direction(row["type"]),
            details=row.get("details"),
        )
        for row in reader.recent_operations(RECENT_PER_SOURCE)
    ]
    transfers = [
        TransferActivity(id=row["id"], date=row["date"], amount=float(row["amount"] or 0), details=row.get("details"))
        for row in reader.recent_transfers(RECENT_PER_SOURCE)
    ]

    return {
        "total_in": total_in,
        "total_out": total_out,
        "total_transfers": total_transfers,
        "balance": compute_balance(total_in, total_out, total_transfers),
        "categories": [
            {"category": row["category"], "total": float(row["total"] or 0)}
            for row in _sorted_desc(reader.category_totals())
        ],
        "persons": [
            {"person_name": row["person_name"], "total": float(row["total"] or 0)}
            for row in _sorted_desc(reader.person_totals())
        ],
        "properties": [
            {"property_type": row["property_type"], "total": float(row["total"] or 0)}
            for row in _sorted_desc(reader.property_totals())
            if row["property_type"]
        ],
        "recent": [
            {
                "id": activity.id,
                "date": activity.date,
                "amount": activity.amount,
                "type": activity.direction.value,
                "details": activity.details,
                "origin": activity.origin,
            }
            for activity in merge_recent(operations, transfers)
        ],
    }
