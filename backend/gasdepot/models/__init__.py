from .warehouses import Warehouse
from .auth import User, SessionToken, ThrottleEntry
from .catalog import CylinderType, OtherProduct, CustomerSpecificPrice
from .customers import Customer, LoyaltyTransaction
from .inventory import InventoryStock, InventoryLog, SupplierLoan
from .orders import Order, OrderItem, Delivery, Payment
from .settings import ConfigurationSetting

__all__ = [
    'Warehouse',
    'User', 'SessionToken', 'ThrottleEntry',
    'CylinderType', 'OtherProduct', 'CustomerSpecificPrice',
    'Customer', 'LoyaltyTransaction',
    'InventoryStock', 'InventoryLog', 'SupplierLoan',
    'Order', 'OrderItem', 'Delivery', 'Payment',
    'ConfigurationSetting',
]
