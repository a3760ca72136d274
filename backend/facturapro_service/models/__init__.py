from .tenancy import Tenant
from .auth import Identity, Account, SessionToken
from .catalog import Client, Product
from .invoices import Invoice, InvoiceLine, INVOICE_STATUSES

__all__ = [
    'Tenant',
    'Identity', 'Account', 'SessionToken',
    'Client', 'Product',
    'Invoice', 'InvoiceLine', 'INVOICE_STATUSES',
]
