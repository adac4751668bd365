from .customers import CustomerAccount, ARTransaction
from .shifts import Shift
from .sales import Sale, SaleLine, SalePaymentLeg
from .documents import DocumentSequence, AuditEvent, PendingInventoryRequest

__all__ = [
    'CustomerAccount', 'ARTransaction',
    'Shift',
    'Sale', 'SaleLine', 'SalePaymentLeg',
    'DocumentSequence', 'AuditEvent', 'PendingInventoryRequest',
]
