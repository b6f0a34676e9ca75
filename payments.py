"""Simulated M-Pesa verification for daily limit upgrades"""
import logging
import time

from errors import ValidationError
from models import UPGRADE_TIERS
import util

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """Accepts any well-formed transaction code after a short delay.

    There is no payment backend; the code format is the only check.
    """

    def __init__(self, delay=2, sleep=time.sleep):
        self.delay = delay
        self.sleep = sleep

    def verify(self, tier_limit, transaction_code, current_limit):
        tier = next((t for t in UPGRADE_TIERS if t['limit'] == tier_limit), None)
        if tier is None or tier['limit'] <= current_limit:
            raise ValidationError("Select an available upgrade tier.", field='tier')
        if not util.is_valid_transaction_code(transaction_code):
            raise ValidationError("Transaction code must be exactly 10 alphanumeric characters.",
                                  field='mpesa_code')
        if self.delay:
            self.sleep(self.delay)
        logger.info(f"Accepted upgrade payment for {tier['label']} (KES {tier['cost']})")
        return tier
