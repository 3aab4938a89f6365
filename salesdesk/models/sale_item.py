"""Sale Item model."""
from sqlalchemy import Column, Integer, Numeric, Enum, ForeignKey
from sqlalchemy.orm import relationship
from salesdesk.database import Base, IdType
from salesdesk.pricing import DiscountType, TaxMethod


class SaleItem(Base):
    """Sale Item - one priced line of a sale, stored as the engine computed it."""

    __tablename__ = 'sale_item'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sale_id = Column(IdType, ForeignKey('sale.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    line_base = Column(Numeric(14, 2), nullable=False)
    line_discount_type = Column(Enum(DiscountType, name='discount_type'), nullable=False, default=DiscountType.NONE)
    line_discount_value = Column(Numeric(14, 2), nullable=False, default=0)
    line_discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    invoice_discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_method = Column(Enum(TaxMethod, name='tax_method'), nullable=False)
    line_tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    line_total = Column(Numeric(14, 2), nullable=False)

    # Relationships
    sale = relationship('Sale', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<SaleItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
