# Overview: GST split (CGST/SGST vs IGST) for a single taxable amount.

"""
Tax Engine

Intra-state supply (buyer in the seller's state, or buyer state unknown) is
taxed as CGST + SGST, each half the rate. Inter-state supply is taxed as a
single IGST at the full rate.

All amounts are integer cents and rates are integer basis points, so every
component is computed exactly and rounded once, half-up, to the cent.
Document totals are sums of already-rounded components.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import InvalidLineItem


@dataclass(frozen=True)
class TaxBreakdown:
    cgst_cents: int = 0
    sgst_cents: int = 0
    igst_cents: int = 0

    @property
    def total_cents(self) -> int:
        return self.cgst_cents + self.sgst_cents + self.igst_cents

    def to_dict(self) -> dict:
        return {
            "cgst_cents": self.cgst_cents,
            "sgst_cents": self.sgst_cents,
            "igst_cents": self.igst_cents,
            "tax_cents": self.total_cents,
        }


ZERO_TAX = TaxBreakdown()


def round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up. Both arguments must be non-negative."""
    return (numerator + denominator // 2) // denominator


def _normalize_state(state: str | None) -> str:
    return (state or "").strip().casefold()


def is_intra_state(seller_state: str | None, buyer_state: str | None) -> bool:
    """True when the supply is taxed as CGST+SGST."""
    buyer = _normalize_state(buyer_state)
    if not buyer:
        return True
    return buyer == _normalize_state(seller_state)


def _require_non_negative_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidLineItem(f"{name} must be an integer", details={name: value})
    if value < 0:
        raise InvalidLineItem(f"{name} cannot be negative", details={name: value})


def compute_line_tax(
    taxable_cents: int,
    tax_rate_bps: int,
    seller_state: str | None,
    buyer_state: str | None,
    *,
    enable_tax: bool = True,
) -> TaxBreakdown:
    _require_non_negative_int("taxable_cents", taxable_cents)
    _require_non_negative_int("tax_rate_bps", tax_rate_bps)

    if not enable_tax or tax_rate_bps == 0 or taxable_cents == 0:
        return ZERO_TAX

    if is_intra_state(seller_state, buyer_state):
        half = round_half_up(taxable_cents * tax_rate_bps, 20000)
        return TaxBreakdown(cgst_cents=half, sgst_cents=half)

    return TaxBreakdown(igst_cents=round_half_up(taxable_cents * tax_rate_bps, 10000))
