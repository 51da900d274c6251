"""Signer factory.

Creates the signing identity from configuration. A session without a key
is read-only; writes then fail with NoSigningIdentity.
"""

import logging
from typing import Optional

from scrow.config import Settings
from scrow.signing.base import SignerBackend
from scrow.signing.local import LocalSigner

logger = logging.getLogger(__name__)


def get_signer(settings: Settings) -> Optional[SignerBackend]:
    """Build the configured signer, or None when no key is set."""
    if not settings.has_signer:
        logger.info("No signing key configured - read-only session")
        return None
    return LocalSigner(settings.private_key)
