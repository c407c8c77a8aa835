# FILE: dentlink/services/payment_gateway.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from dentlink.core.errors import PaymentFailed, ValidationError
from dentlink.models.ledger import PaymentMethod
from dentlink.services.money import money

EXTERNAL_METHODS = (PaymentMethod.BKASH, PaymentMethod.BANK)


@dataclass(frozen=True)
class GatewayCapture:
    """What the payment gateway hands back; protocol details stay outside."""
    success: bool
    reference_id: str
    amount: Decimal
    method: PaymentMethod


def check_capture(capture: GatewayCapture, expected_amount) -> GatewayCapture:
    if not capture.success:
        raise PaymentFailed("Payment was not captured by the gateway",
                            extra={"reference_id": capture.reference_id})
    if not (capture.reference_id or "").strip():
        raise ValidationError("Capture reference_id is required")
    try:
        method = PaymentMethod(capture.method)
    except ValueError:
        raise ValidationError(f"Unknown payment method '{capture.method}'")
    if method not in EXTERNAL_METHODS:
        raise ValidationError(
            f"'{method.value}' is not a gateway payment method")
    amt = money(capture.amount)
    if amt != money(expected_amount):
        raise ValidationError(
            "Captured amount does not match the chosen proposal cost",
            extra={
                "captured": str(amt),
                "expected": str(money(expected_amount))
            })
    return GatewayCapture(success=True,
                          reference_id=capture.reference_id.strip(),
                          amount=amt,
                          method=method)
