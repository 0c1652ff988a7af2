from .auth import User, Permission, SessionToken
from .catalog import Category, Product
from .stocks import Stock, StockMovement, MOVEMENT_TYPES
from .parties import Customer, Supplier, Delegate, DelegateCommission
from .sales import Sale, SaleItem, SaleReturn, SaleReturnItem, Debt, Installment, CustomerReceipt
from .purchases import Purchase, PurchaseItem, PurchaseReturn, PurchaseReturnItem
from .cash import CashBox, CashBoxTransaction, UserCashBoxSettings, MoneyBox, MoneyBoxTransaction
from .settings import Setting, MigrationRecord

__all__ = [
    'User', 'Permission', 'SessionToken',
    'Category', 'Product',
    'Stock', 'StockMovement', 'MOVEMENT_TYPES',
    'Customer', 'Supplier', 'Delegate', 'DelegateCommission',
    'Sale', 'SaleItem', 'SaleReturn', 'SaleReturnItem', 'Debt', 'Installment', 'CustomerReceipt',
    'Purchase', 'PurchaseItem', 'PurchaseReturn', 'PurchaseReturnItem',
    'CashBox', 'CashBoxTransaction', 'UserCashBoxSettings', 'MoneyBox', 'MoneyBoxTransaction',
    'Setting', 'MigrationRecord',
]
