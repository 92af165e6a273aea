from .staff import Cashier
from .registers import CashRegister, CashSession
from .catalog import Product, ProductVariant, ZoneType, TemplateZone, Consumable, TemplateRecipe
from .inventory import InventoryMovement
from .sales import Sale, SaleLine, Tender
from .documents import DocumentSequence

__all__ = [
    'Cashier',
    'CashRegister', 'CashSession',
    'Product', 'ProductVariant', 'ZoneType', 'TemplateZone', 'Consumable', 'TemplateRecipe',
    'InventoryMovement',
    'Sale', 'SaleLine', 'Tender',
    'DocumentSequence',
]
