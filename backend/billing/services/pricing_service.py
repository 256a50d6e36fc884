# Overview: Line aggregation into subtotal, discount, tax and grand total.

from __future__ import annotations

from dataclasses import dataclass

from ..errors import InvalidLineItem, InvalidDiscount
from .tax_service import compute_line_tax


@dataclass(frozen=True)
class LineInput:
    quantity: int
    unit_price_cents: int
    tax_rate_bps: int


@dataclass(frozen=True)
class LineTotals:
    quantity: int
    unit_price_cents: int
    tax_rate_bps: int
    line_total_cents: int
    discount_cents: int
    taxable_cents: int
    cgst_cents: int
    sgst_cents: int
    igst_cents: int

    @property
    def tax_cents(self) -> int:
        return self.cgst_cents + self.sgst_cents + self.igst_cents


@dataclass(frozen=True)
class Totals:
    lines: tuple
    subtotal_cents: int
    discount_cents: int
    discount_reason: str | None
    cgst_cents: int
    sgst_cents: int
    igst_cents: int

    @property
    def tax_cents(self) -> int:
        return self.cgst_cents + self.sgst_cents + self.igst_cents

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents + self.tax_cents

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "discount_reason": self.discount_reason,
            "cgst_cents": self.cgst_cents,
            "sgst_cents": self.sgst_cents,
            "igst_cents": self.igst_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_line(index: int, line: LineInput) -> None:
    if not _is_int(line.quantity) or line.quantity <= 0:
        raise InvalidLineItem(
            "Line quantity must be a positive integer",
            details={"line": index, "quantity": line.quantity},
        )
    if not _is_int(line.unit_price_cents) or line.unit_price_cents < 0:
        raise InvalidLineItem(
            "Line unit price cannot be negative",
            details={"line": index, "unit_price_cents": line.unit_price_cents},
        )
    if not _is_int(line.tax_rate_bps) or line.tax_rate_bps < 0:
        raise InvalidLineItem(
            "Line tax rate cannot be negative",
            details={"line": index, "tax_rate_bps": line.tax_rate_bps},
        )


def allocate_discount(line_totals: list[int], discount_cents: int) -> list[int]:
    """
    Pro-rate discount_cents across lines by line value.

    Largest-remainder allocation: every line gets floor(discount * share),
    the leftover cents go to the largest fractional remainders (ties to the
    earlier line). The shares always sum to discount_cents exactly.
    """
    subtotal = sum(line_totals)
    if discount_cents == 0 or subtotal == 0:
        return [0] * len(line_totals)

    shares = []
    remainders = []
    for index, amount in enumerate(line_totals):
        share, remainder = divmod(discount_cents * amount, subtotal)
        shares.append(share)
        remainders.append((-remainder, index))

    leftover = discount_cents - sum(shares)
    for _, index in sorted(remainders)[:leftover]:
        shares[index] += 1
    return shares


def calculate_totals(
    lines,
    discount_cents: int = 0,
    discount_reason: str | None = None,
    seller_state: str | None = None,
    buyer_state: str | None = None,
    enable_tax: bool = True,
) -> Totals:
    """
    Compute document totals.

    Discount is a fixed amount pro-rated over the lines; tax is computed per
    line on the discounted amount, so
    total = subtotal - discount + cgst + sgst + igst holds exactly.
    """
    lines = list(lines)
    if not lines:
        raise InvalidLineItem("At least one line item is required")

    for index, line in enumerate(lines):
        _validate_line(index, line)

    line_totals = [line.quantity * line.unit_price_cents for line in lines]
    subtotal = sum(line_totals)

    if not _is_int(discount_cents) or discount_cents < 0:
        raise InvalidDiscount("Discount cannot be negative", details={"discount_cents": discount_cents})
    if discount_cents > subtotal:
        raise InvalidDiscount(
            "Discount cannot exceed the subtotal",
            details={"discount_cents": discount_cents, "subtotal_cents": subtotal},
        )

    shares = allocate_discount(line_totals, discount_cents)

    results = []
    for line, line_total, share in zip(lines, line_totals, shares):
        taxable = line_total - share
        tax = compute_line_tax(
            taxable, line.tax_rate_bps, seller_state, buyer_state, enable_tax=enable_tax
        )
        results.append(
            LineTotals(
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                tax_rate_bps=line.tax_rate_bps,
                line_total_cents=line_total,
                discount_cents=share,
                taxable_cents=taxable,
                cgst_cents=tax.cgst_cents,
                sgst_cents=tax.sgst_cents,
                igst_cents=tax.igst_cents,
            )
        )

    return Totals(
        lines=tuple(results),
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        discount_reason=discount_reason,
        cgst_cents=sum(r.cgst_cents for r in results),
        sgst_cents=sum(r.sgst_cents for r in results),
        igst_cents=sum(r.igst_cents for r in results),
    )
