"""
Invoice number allocation.

Numbers look like INV-YYMMDD-HHMMSS-RRR: wall clock plus a 3 digit random
suffix, checked against existing sale headers. Uniqueness is probabilistic,
so the allocator retries a bounded number of times and then fails loudly.
The UNIQUE constraint on sale.invoice_number is the storage backstop.
"""
import logging
import random
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from salesdesk.models import Sale, SaleDocumentType
from salesdesk.exceptions import InvoiceNumberUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5

PREFIXES = {
    SaleDocumentType.INVOICE: 'INV',
    SaleDocumentType.QUOTATION: 'QUO',
}


class InvoiceNumberAllocator:
    """Builds candidate numbers and returns the first one not yet used."""

    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.now,
        randint: Callable[[int, int], int] = random.randint,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS
    ):
        self.clock = clock
        self.randint = randint
        self.max_attempts = max_attempts

    def build_candidate(self, document_type: SaleDocumentType = SaleDocumentType.INVOICE) -> str:
        now = self.clock()
        suffix = self.randint(100, 999)
        return f"{PREFIXES[document_type]}-{now.strftime('%y%m%d-%H%M%S')}-{suffix:03d}"

    def allocate(self, session: Session, document_type: SaleDocumentType = SaleDocumentType.INVOICE) -> str:
        """Return an unused invoice number or raise InvoiceNumberUnavailableError."""
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.build_candidate(document_type)
            exists = session.query(Sale.id).filter(
                Sale.invoice_number == candidate
            ).first() is not None
            if not exists:
                return candidate
            logger.info(f"Invoice number {candidate} already taken (attempt {attempt}/{self.max_attempts})")

        logger.error(f"Invoice number allocation exhausted after {self.max_attempts} attempts")
        raise InvoiceNumberUnavailableError(self.max_attempts)
