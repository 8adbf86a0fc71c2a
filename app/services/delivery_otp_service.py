"""
Delivery OTP Service

Generates the per-order delivery code and verifies it when a rider marks the
order delivered. The code is shown to the customer only; the rider must get
it from the customer at the door.
"""

import hmac
import logging
import secrets
import uuid

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import InvalidOtpError, OtpAttemptsExceededError
from app.models.order import Order

logger = logging.getLogger(__name__)


class DeliveryOtpService:
    """
    Service for handling delivery OTP operations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.otp_length = settings.DELIVERY_OTP_LENGTH
        self.max_attempts = settings.DELIVERY_OTP_MAX_ATTEMPTS

    def generate_otp(self) -> str:
        """Generate a random numeric OTP."""
        return "".join([str(secrets.randbelow(10)) for _ in range(self.otp_length)])

    def _matches(self, supplied: str, stored: str) -> bool:
        """Constant-time comparison."""
        return hmac.compare_digest(supplied.strip().encode(), stored.encode())

    async def verify(self, order: Order, supplied_otp: str) -> None:
        """
        Check a supplied code against the order's stored code.

        A failed attempt is counted and committed before raising, so the
        counter survives the caller's rollback. Once the counter reaches the
        limit, codes are no longer compared.

        Raises:
            OtpAttemptsExceededError: too many failed attempts
            InvalidOtpError: code does not match
        """
        if order.delivery_otp_attempts >= self.max_attempts:
            logger.warning(f"OTP attempts exhausted for order {order.order_number}")
            raise OtpAttemptsExceededError(
                "Too many incorrect delivery codes. Contact the shop to complete this delivery."
            )

        if self._matches(supplied_otp or "", order.delivery_otp):
            return

        await self._record_failure(order.id)
        attempts = order.delivery_otp_attempts + 1
        remaining = max(self.max_attempts - attempts, 0)
        logger.warning(f"Invalid delivery OTP for order {order.order_number}, {remaining} attempts left")
        raise InvalidOtpError(f"Invalid delivery code. {remaining} attempts remaining.")

    async def _record_failure(self, order_id: uuid.UUID) -> None:
        await self.db.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(delivery_otp_attempts=Order.delivery_otp_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
