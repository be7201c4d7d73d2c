"""
Relay wallet generation.
"""
import logging
import secrets

from eth_account import Account

from .exceptions import RelayGenerationError
from .models import RelayAccount

logger = logging.getLogger(__name__)


def generate() -> RelayAccount:
    """
    Generate a fresh single-use relay account.

    The key comes straight from the operating system's CSPRNG. There is no
    seed parameter and no HD derivation: each relay account must be
    independent of every other one.

    Returns:
        RelayAccount with new key material

    Raises:
        RelayGenerationError: If the entropy source fails
    """
    try:
        private_key = secrets.token_bytes(32)
        account = Account.from_key(private_key)
    except (OSError, ValueError) as e:
        # ValueError covers the ~2^-128 chance of a key outside the curve order
        raise RelayGenerationError(f"Failed to generate relay account: {e}")

    relay = RelayAccount(account=account)
    logger.debug("Generated relay account %s…", relay.address[:8])
    return relay
