# Overview: Pure tax and discount calculator; no I/O, no session access.

"""
Tax/Discount Calculator

WHY: Shelf prices are VAT-inclusive. The receipt needs the VATable sale,
the VAT portion and (for corporate buyers) the expanded withholding tax
that the buyer keeps back from what they pay.

DESIGN PRINCIPLES:
- Integer centavos throughout; rates are basis points (1200 = 12%)
- Round half up to the centavo, once per derived figure
- Discount is applied per line before tax is backed out
- subtotal + tax == total exactly (tax is the remainder, not a product)
- Withholding reduces what is collected, not what is recognized as revenue
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from ..errors import CartValidationError


# =============================================================================
# TAX MODES (CONSTANTS)
# =============================================================================

TAX_MODE_VAT = "VAT"
TAX_MODE_NON_VAT = "NON_VAT"
TAX_MODE_EWT = "EWT"

VALID_TAX_MODES = [TAX_MODE_VAT, TAX_MODE_NON_VAT, TAX_MODE_EWT]

DEFAULT_VAT_RATE_BPS = 1200
DEFAULT_EWT_RATE_BPS = 100

BPS_SCALE = 10000


@dataclass(frozen=True)
class CartLine:
    product_id: int
    unit_price_cents: int
    quantity: int
    discount_percent: Decimal | float | int | str = 0


@dataclass(frozen=True)
class LineTotals:
    product_id: int
    quantity: int
    unit_price_cents: int
    discount_bps: int
    gross_cents: int
    discount_cents: int
    line_total_cents: int


@dataclass(frozen=True)
class SaleTotals:
    tax_mode: str
    gross_cents: int
    discount_cents: int
    subtotal_cents: int
    tax_cents: int
    withholding_cents: int
    total_cents: int
    net_due_cents: int
    lines: list[LineTotals] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "tax_mode": self.tax_mode,
            "gross_cents": self.gross_cents,
            "discount_cents": self.discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "withholding_cents": self.withholding_cents,
            "total_cents": self.total_cents,
            "net_due_cents": self.net_due_cents,
            "lines": [
                {
                    "product_id": lt.product_id,
                    "quantity": lt.quantity,
                    "unit_price_cents": lt.unit_price_cents,
                    "discount_bps": lt.discount_bps,
                    "discount_cents": lt.discount_cents,
                    "line_total_cents": lt.line_total_cents,
                }
                for lt in self.lines
            ],
        }


def round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half up. Both arguments must be non-negative."""
    return (2 * numerator + denominator) // (2 * denominator)


def discount_percent_to_bps(discount_percent) -> int:
    """
    Convert a 0-100 percentage (up to two decimals) to basis points.

    12.5 -> 1250. Goes through str() so 12.34 does not pick up float noise.
    """
    if isinstance(discount_percent, bool):
        raise CartValidationError(f"invalid discount percent: {discount_percent}")
    try:
        pct = Decimal(str(discount_percent if discount_percent is not None else 0))
    except InvalidOperation:
        raise CartValidationError(f"invalid discount percent: {discount_percent}")

    if not pct.is_finite() or pct < 0 or pct > 100:
        raise CartValidationError(
            f"discount percent out of range: {discount_percent}",
            details={"allowed": "0-100"},
        )
    bps = pct * 100
    if bps != bps.to_integral_value():
        raise CartValidationError(f"discount percent has more than two decimals: {discount_percent}")
    return int(bps)


def _validate_line(index: int, line: CartLine) -> None:
    if line.product_id is None:
        raise CartValidationError(f"line {index + 1}: product_id is required", details={"line": index + 1})
    qty = line.quantity
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise CartValidationError(
            f"line {index + 1}: quantity must be a positive integer",
            details={"line": index + 1, "quantity": qty},
        )
    price = line.unit_price_cents
    if isinstance(price, bool) or not isinstance(price, int) or price < 0:
        raise CartValidationError(
            f"line {index + 1}: unit price must be a non-negative integer amount in cents",
            details={"line": index + 1, "unit_price_cents": price},
        )


def compute_line(index: int, line: CartLine) -> LineTotals:
    _validate_line(index, line)
    discount_bps = discount_percent_to_bps(line.discount_percent)
    gross = line.unit_price_cents * line.quantity
    discount = round_half_up(gross * discount_bps, BPS_SCALE)
    return LineTotals(
        product_id=line.product_id,
        quantity=line.quantity,
        unit_price_cents=line.unit_price_cents,
        discount_bps=discount_bps,
        gross_cents=gross,
        discount_cents=discount,
        line_total_cents=gross - discount,
    )


def compute_totals(
    lines: list[CartLine],
    tax_mode: str = TAX_MODE_VAT,
    *,
    vat_rate_bps: int = DEFAULT_VAT_RATE_BPS,
    ewt_rate_bps: int = DEFAULT_EWT_RATE_BPS,
) -> SaleTotals:
    """
    Compute sale totals from VAT-inclusive cart lines.

    VAT / EWT:
        subtotal = total / (1 + vat_rate), rounded
        tax      = total - subtotal
    NON_VAT:
        subtotal = total, tax = 0
    EWT only:
        withholding = subtotal * ewt_rate, rounded
        net_due     = total - withholding

    Raises:
        CartValidationError: Empty cart, bad quantity/price/discount, or
            unknown tax mode. Nothing downstream runs.
    """
    if tax_mode not in VALID_TAX_MODES:
        raise CartValidationError(f"unknown tax mode: {tax_mode}", details={"allowed": VALID_TAX_MODES})
    if not lines:
        raise CartValidationError("cart is empty")

    line_totals = [compute_line(i, line) for i, line in enumerate(lines)]

    gross = sum(lt.gross_cents for lt in line_totals)
    discount = sum(lt.discount_cents for lt in line_totals)
    total = sum(lt.line_total_cents for lt in line_totals)

    if tax_mode == TAX_MODE_NON_VAT:
        subtotal = total
    else:
        subtotal = round_half_up(total * BPS_SCALE, BPS_SCALE + vat_rate_bps)
    tax = total - subtotal

    withholding = 0
    if tax_mode == TAX_MODE_EWT:
        withholding = round_half_up(subtotal * ewt_rate_bps, BPS_SCALE)

    return SaleTotals(
        tax_mode=tax_mode,
        gross_cents=gross,
        discount_cents=discount,
        subtotal_cents=subtotal,
        tax_cents=tax,
        withholding_cents=withholding,
        total_cents=total,
        net_due_cents=total - withholding,
        lines=line_totals,
    )
