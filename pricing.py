"""
Order pricing

Derives the four monetary fields of an order from its line items. Amounts
stay Decimal all the way through and are only formatted as fixed 2-decimal
strings when written to the store.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Mapping

CENT = Decimal("0.01")
FREE_SHIPPING_THRESHOLD = Decimal("100")
SHIPPING_FEE = Decimal("10")
TAX_RATE = Decimal("0.15")


def to_money(value: Any) -> Decimal:
    """Convert a stored price (number or string) to a Decimal rounded to cents."""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    else:
        amount = Decimal(str(value))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Prices:
    items_price: Decimal
    shipping_price: Decimal
    tax_price: Decimal
    total_price: Decimal

    def as_document(self) -> Dict[str, str]:
        return {
            "items_price": format_money(self.items_price),
            "shipping_price": format_money(self.shipping_price),
            "tax_price": format_money(self.tax_price),
            "total_price": format_money(self.total_price),
        }


def calc_prices(items: Iterable[Mapping[str, Any]]) -> Prices:
    """Each item needs a `price` and a `qty`. An empty sequence is priced
    as shipping only; callers that must reject empty orders do so first."""
    items_price = sum((to_money(item["price"]) * int(item["qty"]) for item in items), Decimal("0"))
    items_price = items_price.quantize(CENT, rounding=ROUND_HALF_UP)

    shipping_price = Decimal("0") if items_price > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    shipping_price = shipping_price.quantize(CENT)
    tax_price = (items_price * TAX_RATE).quantize(CENT, rounding=ROUND_HALF_UP)
    total_price = (items_price + shipping_price + tax_price).quantize(CENT, rounding=ROUND_HALF_UP)

    return Prices(
        items_price=items_price,
        shipping_price=shipping_price,
        tax_price=tax_price,
        total_price=total_price,
    )
