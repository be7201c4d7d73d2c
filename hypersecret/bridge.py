"""
Bridge credit waiter.

After the relay account's tokens enter the bridge on the source network, the
destination network credits the same address some time later. This module
polls the destination's account state at a fixed interval until the credit
shows up or the attempt budget runs out.
"""
import logging
import threading
from decimal import Decimal
from typing import Optional, Protocol

import requests

from ._rate_limited_log import rate_limited_log
from .exceptions import BridgeTimeoutError, ExecutionCancelledError, TransientQueryError
from .models import short_address

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_INTERVAL = 5.0


class BalanceSource(Protocol):
    """Anything that can report an account's value on the destination network"""

    def account_value(self, address: str) -> Decimal:
        ...


class BridgeCreditWaiter:
    """
    Fixed-interval poller for the destination credit.

    Query failures count as an ordinary unsuccessful attempt: they consume one
    unit of the attempt budget, exactly like a below-threshold balance, and
    never end the wait early. There is no backoff.
    """

    def __init__(
        self,
        balance_source: BalanceSource,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval: float = DEFAULT_INTERVAL
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.balance_source = balance_source
        self.max_attempts = max_attempts
        self.interval = interval

    def wait_for_credit(
        self,
        relay_address: str,
        expected_amount: Decimal,
        cancel_event: Optional[threading.Event] = None
    ) -> bool:
        """
        Block until the relay account's balance reaches ``expected_amount``.

        Args:
            relay_address: Account expected to receive the bridged funds
            expected_amount: Minimum balance that counts as credited
            cancel_event: Set by the caller to abandon the wait

        Returns:
            True once the credit is observed

        Raises:
            BridgeTimeoutError: After ``max_attempts`` polls without the credit
            ExecutionCancelledError: If ``cancel_event`` is set while waiting
        """
        cancel_event = cancel_event or threading.Event()
        logger.info("Waiting for credit of %s to %s", expected_amount, short_address(relay_address))

        for attempt in range(1, self.max_attempts + 1):
            if cancel_event.is_set():
                raise ExecutionCancelledError("Credit wait cancelled")

            try:
                balance = self.balance_source.account_value(relay_address)
            except (TransientQueryError, requests.RequestException, OSError) as e:
                rate_limited_log(
                    f"Credit poll for {short_address(relay_address)} failed: {e}",
                    level="warning",
                    interval=60,
                    logger_instance=logger
                )
                logger.debug("Attempt %d/%d: error polling destination", attempt, self.max_attempts)
            else:
                if balance >= expected_amount:
                    logger.info("Credited after %d attempt(s), balance=%s", attempt, balance)
                    return True
                logger.info("Attempt %d/%d: balance=%s, waiting...", attempt, self.max_attempts, balance)

            if attempt < self.max_attempts and cancel_event.wait(self.interval):
                raise ExecutionCancelledError("Credit wait cancelled")

        raise BridgeTimeoutError(
            f"Bridge credit timeout after {self.max_attempts} attempts "
            f"({self.max_attempts * self.interval:g}s)",
            attempts=self.max_attempts
        )
