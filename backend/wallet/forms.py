"""Parsing of multipart form fields into typed inputs.

Browsers submit every field as a string, often empty, so the rules live here:
empty optional strings become ``None``, dates must be ISO ``YYYY-MM-DD`` and
amounts must be finite, non-negative decimals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError
from .schemas import Direction


@dataclass(frozen=True)
class OperationInput:
    date: str
    type: Direction
    amount: Decimal
    property_type: str | None = None
    reference_number: str | None = None
    category: str | None = None
    description: str | None = None
    attachment_path: str | None = None


@dataclass(frozen=True)
class TransferInput:
    date: str
    person_name: str
    amount: Decimal
    attachment_path: str | None = None


@dataclass(frozen=True)
class ServiceInput:
    platform_id: int
    name: str
    start_date: str | None = None
    end_date: str | None = None
    attachment_path: str | None = None


def clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def parse_date(value: str | None, field: str, required: bool = True) -> str | None:
    raw = clean_text(value)
    if raw is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    try:
        return date.fromisoformat(raw).isoformat()
    except ValueError as exc:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format", field=field) from exc


def parse_amount(value: str | None, required: bool = False) -> Decimal:
    raw = clean_text(value)
    if raw is None:
        if required:
            raise ValidationError("amount is required", field="amount")
        return Decimal("0")
    try:
        amount = Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError("amount must be a number", field="amount") from exc
    if not amount.is_finite():
        raise ValidationError("amount must be a number", field="amount")
    if amount < 0:
        raise ValidationError("amount must not be negative", field="amount")
    return amount


def parse_direction(value: str | None) -> Direction:
    raw = clean_text(value)
    if raw is None:
        raise ValidationError("type is required", field="type")
    try:
        return Direction(raw)
    except ValueError as exc:
        raise ValidationError("type must be 'in' or 'out'", field="type") from exc


def parse_id(value: str | None, field: str) -> int:
    raw = clean_text(value)
    if raw is None:
        raise ValidationError(f"{field} is required", field=field)
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{field} must be an integer", field=field) from exc


def operation_from_form(
    *,
    date_value: str | None,
    type_value: str | None,
    amount: str | None,
    property_type: str | None,
    reference_number: str | None,
    category: str | None,
    description: str | None,
    existing: dict[str, Any] | None = None,
) -> OperationInput:
    """Build an operation from submitted fields.

    When ``existing`` is given (full-row update) a missing date or type keeps
    the stored value, every other field is replaced, and the attachment is
    carried over until the caller swaps it.
    """
    if existing is not None:
        op_date = parse_date(date_value, "date", required=False) or existing["date"]
        op_type = parse_direction(type_value) if clean_text(type_value) else Direction(existing["type"])
        attachment_path = existing.get("attachment_path")
    else:
        op_date = parse_date(date_value, "date")
        op_type = parse_direction(type_value)
        attachment_path = None
    return OperationInput(
        date=op_date,
        type=op_type,
        amount=parse_amount(amount),
        property_type=clean_text(property_type),
        reference_number=clean_text(reference_number),
        category=clean_text(category),
        description=clean_text(description),
        attachment_path=attachment_path,
    )


def transfer_from_form(*, date_value: str | None, person_name: str | None, amount: str | None) -> TransferInput:
    name = clean_text(person_name)
    if name is None:
        raise ValidationError("person_name is required", field="person_name")
    return TransferInput(
        date=parse_date(date_value, "date"),
        person_name=name,
        amount=parse_amount(amount, required=True),
    )


def service_from_form(
    *,
    platform_id: str | None,
    name: str | None,
    start_date: str | None,
    end_date: str | None,
) -> ServiceInput:
    service_name = clean_text(name)
    if service_name is None:
        raise ValidationError("name is required", field="name")
    start = parse_date(start_date, "start_date", required=False)
    end = parse_date(end_date, "end_date", required=False)
    if start and end and end < start:
        raise ValidationError("end_date must be on or after start_date", field="end_date")
    return ServiceInput(
        platform_id=parse_id(platform_id, "platform_id"),
        name=service_name,
        start_date=start,
        end_date=end,
    )
