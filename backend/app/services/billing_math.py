from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def money(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineInput:
    service_name: str
    quantity: int
    unit_price: Decimal
    description: str | None = None


@dataclass(frozen=True)
class PricedLine:
    service_name: str
    description: str | None
    quantity: int
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    lines: tuple[PricedLine, ...]
    subtotal: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    total_amount: Decimal


def price_line(line: LineInput) -> PricedLine:
    if line.quantity < 1:
        raise ValueError("quantity must be at least 1")
    unit_price = money(line.unit_price)
    if unit_price < 0:
        raise ValueError("unit_price cannot be negative")
    return PricedLine(
        service_name=line.service_name,
        description=line.description,
        quantity=line.quantity,
        unit_price=unit_price,
        total_price=money(unit_price * line.quantity),
    )


def compute_invoice_totals(lines: Iterable[LineInput], discount_percentage) -> InvoiceTotals:
    pct = money(discount_percentage)
    if pct < 0 or pct > HUNDRED:
        raise ValueError("discount_percentage must be between 0 and 100")
    priced = tuple(price_line(line) for line in lines)
    subtotal = money(sum((line.total_price for line in priced), Decimal("0")))
    discount_amount = money(subtotal * pct / HUNDRED)
    return InvoiceTotals(
        lines=priced,
        subtotal=subtotal,
        discount_percentage=pct,
        discount_amount=discount_amount,
        total_amount=subtotal - discount_amount,
    )
