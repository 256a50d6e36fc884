from .catalog import Product, MenuItem, MenuItemIngredient, Customer, Supplier, PaymentMethod, CompanyProfile
from .inventory import InventoryMovement
from .orders import Kot, KotItem
from .invoices import Invoice, InvoiceItem, InvoicePayment
from .purchases import Purchase, PurchaseItem, PurchasePayment
from .ledger import Transaction, DocumentSequence

__all__ = [
    'Product', 'MenuItem', 'MenuItemIngredient', 'Customer', 'Supplier', 'PaymentMethod', 'CompanyProfile',
    'InventoryMovement',
    'Kot', 'KotItem',
    'Invoice', 'InvoiceItem', 'InvoicePayment',
    'Purchase', 'PurchaseItem', 'PurchasePayment',
    'Transaction', 'DocumentSequence',
]
