import logging
from typing import Protocol

from app.core.security import mask_phone

logger = logging.getLogger(__name__)


class OtpDelivery(Protocol):
    async def send(self, phone_number: str, channel: str, code: str) -> None:
        ...


class LoggingOtpDelivery:
    """Stand-in for SMS/E-mail delivery.

    The code itself is written to the log only when ``log_codes`` is on,
    which is meant for local development.
    """

    def __init__(self, log_codes: bool = False):
        self.log_codes = log_codes

    async def send(self, phone_number: str, channel: str, code: str) -> None:
        if self.log_codes:
            logger.info("========================================")
            logger.info(f"  DEV MODE - OTP CODE: {code}  ")
            logger.info(f"  Phone: {mask_phone(phone_number)}  Channel: {channel}  ")
            logger.info("========================================")
        else:
            logger.info(f"OTP dispatched via {channel} to {mask_phone(phone_number)}")
