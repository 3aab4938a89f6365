"""Product model."""
from sqlalchemy import Column, String, Boolean, Integer, Numeric, DateTime, Enum
from sqlalchemy.sql import func
from salesdesk.database import Base, IdType
from salesdesk.pricing import TaxMethod


class Product(Base):
    """
    Product with its authoritative price, tax metadata and stock level.

    stock_qty is shared between concurrent sales and must only be changed
    while the row is locked (see services.stock_service).
    """

    __tablename__ = 'product'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sku = Column(String(64), nullable=True, unique=True)
    name = Column(String(200), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    price = Column(Numeric(14, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0, server_default='0')
    tax_method = Column(Enum(TaxMethod, name='tax_method'), nullable=False, default=TaxMethod.EXCLUSIVE)
    stock_qty = Column(Integer, nullable=False, default=0, server_default='0')
    low_stock_threshold = Column(Integer, nullable=False, default=0, server_default='0')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}', stock_qty={self.stock_qty})>"
