from .branches import Branch, User, Customer
from .inventory import Product, CurrencyExchangeRate
from .transactions import (
    Transaction,
    TransactionItem,
    TransactionPayment,
    TransactionBonusProduct,
    PaymentSchedule,
    CreditRepayment,
)
from .adjustments import DefectiveLog
from .bonuses import Bonus
from .reports import CashierReport
from .tasks import AuditTask, SideEffectFailure

__all__ = [
    'Branch', 'User', 'Customer',
    'Product', 'CurrencyExchangeRate',
    'Transaction', 'TransactionItem', 'TransactionPayment', 'TransactionBonusProduct',
    'PaymentSchedule', 'CreditRepayment',
    'DefectiveLog',
    'Bonus',
    'CashierReport',
    'AuditTask', 'SideEffectFailure',
]
