# Overview: Public entry points of the settlement core for the rest of the application.

from .ar_ledger_service import get_customer_ledger, record_payment
from .settlement_service import refund_sale, settle
from .shift_service import end_shift, start_shift

__all__ = [
    "settle",
    "refund_sale",
    "record_payment",
    "start_shift",
    "end_shift",
    "get_customer_ledger",
]
