"""
Stock ledger guard.

Products are loaded with SELECT ... FOR UPDATE so that two sales can never
read the same stock level and both decrement it. Locks are held until the
caller's transaction commits or rolls back. Low stock crossings are
returned as alerts and only published once that transaction has committed.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from salesdesk.models import Product
from salesdesk.exceptions import BusinessLogicError, NotFoundError, InsufficientStockError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LowStockAlert:
    """Snapshot of a product that dropped below its low stock threshold."""
    product_id: int
    sku: Optional[str]
    name: str
    previous_qty: int
    stock_qty: int
    threshold: int
    source: str


StockObserver = Callable[[LowStockAlert], None]


class LowStockNotifier:
    """Default stock observer: logs a LOW_STOCK_ALERT line."""

    def __init__(self, on_alert: Optional[Callable[[LowStockAlert], None]] = None):
        self.on_alert = on_alert

    def __call__(self, alert: LowStockAlert) -> None:
        logger.warning(
            f"LOW_STOCK_ALERT source={alert.source} product_id={alert.product_id} sku={alert.sku} "
            f"stock_qty={alert.stock_qty} threshold={alert.threshold}"
        )
        if self.on_alert:
            self.on_alert(alert)


def crossed_low_stock_threshold(product: Product, previous_qty: int) -> bool:
    """True when this change took the product from at/above its threshold to below it."""
    threshold = product.low_stock_threshold or 0
    if threshold <= 0:
        return False
    return previous_qty >= threshold and product.stock_qty < threshold


def load_product_for_pricing(session: Session, product_id: int) -> Product:
    """Load a product under an exclusive row lock."""
    product = session.query(Product).filter(
        Product.id == product_id
    ).with_for_update().first()

    if not product:
        raise NotFoundError(f'Product "{product_id}" not found.', payload={'product_id': product_id})
    if not product.active:
        raise BusinessLogicError(f'Product "{product.name}" is not active.')
    return product


def ensure_available(product: Product, quantity: int) -> None:
    """Reject the quantity if the locked stock level cannot cover it."""
    if product.stock_qty < quantity:
        raise InsufficientStockError(
            product.name,
            requested=quantity,
            available=product.stock_qty,
            product_id=product.id
        )


def decrement_stock(
    session: Session,
    product: Product,
    quantity: int,
    source: str = 'sale'
) -> Optional[LowStockAlert]:
    """
    Write stock_qty - quantity on a product already locked by this transaction.

    Returns a LowStockAlert when the change crossed the product's threshold.
    """
    ensure_available(product, quantity)
    previous_qty = product.stock_qty
    product.stock_qty = previous_qty - quantity
    session.flush()

    if not crossed_low_stock_threshold(product, previous_qty):
        return None
    return LowStockAlert(
        product_id=product.id,
        sku=product.sku,
        name=product.name,
        previous_qty=previous_qty,
        stock_qty=product.stock_qty,
        threshold=product.low_stock_threshold,
        source=source
    )


def publish_low_stock_alerts(observer: Optional[StockObserver], alerts: Iterable[LowStockAlert]) -> None:
    """Hand committed low stock alerts to the observer."""
    if observer is None:
        return
    for alert in alerts:
        try:
            observer(alert)
        except Exception as e:
            # Notifications never fail a committed sale
            logger.error(f"Stock observer failed for product {alert.product_id}: {e}")
