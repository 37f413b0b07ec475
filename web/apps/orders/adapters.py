"""In-process stub adapter for the payments port.

``PaymentsStub`` implements ``PaymentsPort`` without any network calls. It
is intended for unit tests and local development where deterministic
behavior is useful and the payments service is not running.
"""

import logging
import threading
import uuid
from decimal import Decimal

from .domain import PaymentCode, PaymentResult, PaymentsPort

logger = logging.getLogger("orders.payments")


class PaymentsStub(PaymentsPort):
    """Stub implementation of ``PaymentsPort``.

    Approves charges with a positive amount and returns a generated UUID
    as the transaction id. Non-positive amounts are rejected. Refunds
    succeed once for every transaction id this instance issued.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._charges: dict[str, Decimal] = {}

    def process_payment(self, amount: Decimal) -> PaymentResult:
        """Charge a mock payment.

        Args:
            amount: Amount to charge in major units (e.g. 12.50).

        Returns:
            PaymentResult: success with a random UUID transaction id when
            ``amount`` > 0; otherwise a failure with ``INVALID_AMOUNT``.
        """
        if amount is None or Decimal(amount) <= 0:
            logger.warning("rejected non-positive payment amount", extra={"amount": str(amount)})
            return PaymentResult.failed("INVALID_AMOUNT", code=PaymentCode.INVALID_AMOUNT)
        tx_id = str(uuid.uuid4())  # Demo: generate a valid UUID
        with self._lock:
            self._charges[tx_id] = Decimal(amount)
        logger.info("payment processed", extra={"amount": str(amount), "transaction_id": tx_id})
        return PaymentResult.succeeded(tx_id)

    def refund(self, transaction_id: str, amount: Decimal) -> PaymentResult:
        with self._lock:
            charged = self._charges.pop(transaction_id, None)
        if charged is None:
            return PaymentResult.failed("UNKNOWN_TRANSACTION", transaction_id=transaction_id)
        logger.info("payment refunded", extra={"amount": str(amount), "transaction_id": transaction_id})
        return PaymentResult.succeeded(transaction_id, message="REFUNDED")
