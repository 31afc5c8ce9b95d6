"""
Pure money and status calculations for the ledger.

Nothing in this module touches the database, so every invariant about totals,
discounts, balances and derived statuses can be unit tested directly. All
amounts are `Decimal` quantized to cents (ROUND_HALF_UP).
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, Iterable, Optional, Tuple

from core.constants import (
    CENT, ZERO, MAX_DISCOUNT_PERCENTAGE, MAX_MONEY_AMOUNT,
    DISCOUNT_TYPE_NONE, DISCOUNT_TYPE_PERCENTAGE, DISCOUNT_TYPE_VALUE, DISCOUNT_TYPES,
    INVOICE_STATUS_DRAFT, INVOICE_STATUS_SENT, INVOICE_STATUS_PARTIAL, INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE, INVOICE_STATUS_CANCELED,
    ADJUSTMENT_FEE,
)
from core.exceptions import ValidationError


def to_money(value: Any, field: str = "amount") -> Decimal:
    """
    Convert a number-like value to a cent-precision Decimal.

    Floats go through `str()` first so 0.1 stays 0.10 instead of
    0.1000000000000000055511151231257827.

    Raises:
        ValidationError: If the value is not a finite number or is out of
            the range money columns can store.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} must be a number") from e
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if abs(amount) > MAX_MONEY_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_MONEY_AMOUNT}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_item(item: Dict[str, Any], index: int = 0) -> Dict[str, Any]:
    """
    Validate and normalize one invoice line item.

    Returns a new dict with `description`, `quantity`, `unit_price`,
    `total_price` and `display_order`.
    """
    description = (item.get("description") or "").strip()
    if not description:
        raise ValidationError(f"Item {index}: description is required")

    quantity = item.get("quantity", 1)
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        try:
            quantity_decimal = Decimal(str(quantity))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"Item {index}: quantity must be a whole number") from e
        if quantity_decimal != quantity_decimal.to_integral_value():
            raise ValidationError(f"Item {index}: quantity must be a whole number")
        quantity = int(quantity_decimal)
    if quantity < 1:
        raise ValidationError(f"Item {index}: quantity must be at least 1")

    unit_price = to_money(item.get("unit_price"), f"Item {index}: unit_price")
    if unit_price < 0:
        raise ValidationError(f"Item {index}: unit_price must be >= 0")

    return {
        "description": description,
        "quantity": quantity,
        "unit_price": unit_price,
        "total_price": to_money(Decimal(quantity) * unit_price, f"Item {index}: total_price"),
        "display_order": item.get("display_order", index),
    }


def validate_discount(discount_type: Optional[str], discount_value: Any) -> Tuple[str, Decimal]:
    """
    Normalize a discount type and value.

    `None` type means no discount. Percentages must be within 0-100 and flat
    values must be non-negative.
    """
    normalized_type = discount_type or DISCOUNT_TYPE_NONE
    if normalized_type not in DISCOUNT_TYPES:
        raise ValidationError(
            f"Invalid discount type. Must be one of: {', '.join(DISCOUNT_TYPES)}"
        )
    if normalized_type == DISCOUNT_TYPE_NONE:
        return normalized_type, ZERO

    value = to_money(discount_value if discount_value is not None else 0, "discount_value")
    if value < 0:
        raise ValidationError("discount_value must be >= 0")
    if normalized_type == DISCOUNT_TYPE_PERCENTAGE and value > MAX_DISCOUNT_PERCENTAGE:
        raise ValidationError("Percentage discount cannot exceed 100")
    return normalized_type, value


def discount_amount(total_amount: Decimal, discount_type: str, discount_value: Decimal) -> Decimal:
    """Money removed from `total_amount` by the discount, never more than the total."""
    if discount_type == DISCOUNT_TYPE_PERCENTAGE:
        amount = (total_amount * discount_value / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
    elif discount_type == DISCOUNT_TYPE_VALUE:
        amount = discount_value
    else:
        amount = ZERO
    return min(amount, total_amount)


def compute_totals(
    items: Iterable[Any],
    discount_type: str,
    discount_value: Decimal
) -> Tuple[Decimal, Decimal]:
    """
    Compute `(total_amount, final_amount)` for a set of items.

    Items may be ORM rows or normalized dicts; both expose `total_price`.
    `final_amount` is floored at zero.
    """
    total = ZERO
    for item in items:
        price = item["total_price"] if isinstance(item, dict) else item.total_price
        total += to_money(price)
    total = to_money(total, "total_amount")
    final = total - discount_amount(total, discount_type, discount_value)
    return total, max(final, ZERO)


def derive_status(current_status: str, paid_amount: Decimal, final_amount: Decimal) -> str:
    """
    Derive the persisted invoice status from payment totals.

    - canceled stays canceled
    - paid when something was paid and it covers the final amount
    - partial when 0 < paid < final
    - with nothing paid, an invoice that had left draft falls back to sent
      and a draft stays draft

    Calling this repeatedly with the same inputs always returns the same
    status.
    """
    if current_status == INVOICE_STATUS_CANCELED:
        return INVOICE_STATUS_CANCELED
    if paid_amount > ZERO and paid_amount >= final_amount:
        return INVOICE_STATUS_PAID
    if paid_amount > ZERO:
        return INVOICE_STATUS_PARTIAL
    if current_status == INVOICE_STATUS_DRAFT:
        return INVOICE_STATUS_DRAFT
    return INVOICE_STATUS_SENT


def effective_status(status: str, due_date: Optional[date], as_of: date) -> str:
    """Status as shown to users: sent/partial invoices past due read as overdue."""
    if (
        status in (INVOICE_STATUS_SENT, INVOICE_STATUS_PARTIAL)
        and due_date is not None
        and due_date < as_of
    ):
        return INVOICE_STATUS_OVERDUE
    return status


def adjustment_credit(adjustment_type: str, amount: Decimal) -> Decimal:
    """
    How much an adjustment reduces the collectible balance.

    Fees add to the balance (negative credit). Write-offs, discounts and
    corrections reduce it; a negative correction therefore adds to it.
    """
    if adjustment_type == ADJUSTMENT_FEE:
        return -amount
    return amount


def net_adjustment_credit(adjustments: Iterable[Any]) -> Decimal:
    """Sum of `adjustment_credit` over adjustment rows or dicts."""
    total = ZERO
    for adjustment in adjustments:
        if isinstance(adjustment, dict):
            total += adjustment_credit(adjustment["type"], to_money(adjustment["amount"]))
        else:
            total += adjustment_credit(adjustment.type, to_money(adjustment.amount))
    return total


def balance_due(final_amount: Decimal, paid_amount: Decimal, adjustments: Iterable[Any] = ()) -> Decimal:
    """
    Collectible balance of an invoice: final - paid - net adjustment credit.

    Never negative.
    """
    balance = to_money(final_amount) - to_money(paid_amount) - net_adjustment_credit(adjustments)
    return max(balance, ZERO)
