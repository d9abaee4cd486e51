"""
The amount a cancellation actually refunds.

A request refunds either what the policy computed or an amount an owner
or admin set by hand, with a note explaining why:

    RefundAmount = ComputedRefund(calculation) | OverriddenRefund(amount, note)

Usage:
    amount = request.refund_amount
    match amount:
        case OverriddenRefund(value, note):
            ...
        case ComputedRefund(calculation):
            ...
    amount.value  # Decimal to send to the gateway
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from cancellations.calculator import RefundCalculation


@dataclass(frozen=True)
class ComputedRefund:
    calculation: RefundCalculation

    @property
    def value(self) -> Decimal:
        return self.calculation.final_refund

    @property
    def is_override(self) -> bool:
        return False


@dataclass(frozen=True)
class OverriddenRefund:
    amount: Decimal
    note: str

    @property
    def value(self) -> Decimal:
        return self.amount

    @property
    def is_override(self) -> bool:
        return True


RefundAmount = Union[ComputedRefund, OverriddenRefund]


def resolve_refund_amount(
    calculation: RefundCalculation,
    custom_amount: Decimal | None,
    custom_note: str | None,
) -> RefundAmount:
    if custom_amount is not None:
        return OverriddenRefund(amount=custom_amount, note=custom_note or "")
    return ComputedRefund(calculation=calculation)


__all__ = [
    "ComputedRefund",
    "OverriddenRefund",
    "RefundAmount",
    "resolve_refund_amount",
]
