"""Sale Payment model for mixed payment methods."""
import enum

from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from salesdesk.database import Base, IdType


class PaymentMethod(str, enum.Enum):
    """Accepted payment methods."""
    CASH = 'CASH'
    CARD = 'CARD'
    TRANSFER = 'TRANSFER'
    MOBILE = 'MOBILE'


class SalePayment(Base):
    """
    Sale Payment - Individual payment for a sale.

    Rows are append-only: a sale's paid total is the sum of its payments.
    """

    __tablename__ = 'sale_payment'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sale_id = Column(IdType, ForeignKey('sale.id', ondelete='CASCADE'), nullable=False, index=True)

    method = Column(String(20), nullable=False)  # PaymentMethod value
    amount = Column(Numeric(14, 2), nullable=False)
    reference = Column(String(120), nullable=True)

    created_by_user_id = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    sale = relationship('Sale', back_populates='payments')

    def __repr__(self):
        return f"<SalePayment(id={self.id}, sale_id={self.sale_id}, method={self.method}, amount={self.amount})>"
