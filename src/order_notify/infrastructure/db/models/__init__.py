"""Import all models so Alembic can discover them via Base.metadata."""
from order_notify.infrastructure.db.models.daily_revenue import DailyRevenueModel
from order_notify.infrastructure.db.models.order import OrderModel

__all__ = [
    "DailyRevenueModel",
    "OrderModel",
]
