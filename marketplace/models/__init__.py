from .application import ApplicationStatus, OrderApplication
from .base import Base
from .category import LOCALES, ServiceCategory
from .executor import ExecutorProfile, executor_categories
from .order import TERMINAL_STATUSES, Order, OrderStatus, PriceType, Urgency

__all__ = [
    "Base",
    "ServiceCategory",
    "LOCALES",
    "Order",
    "OrderStatus",
    "PriceType",
    "Urgency",
    "TERMINAL_STATUSES",
    "OrderApplication",
    "ApplicationStatus",
    "ExecutorProfile",
    "executor_categories",
]
