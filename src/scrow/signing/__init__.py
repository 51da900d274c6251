"""Transaction signing.

- LocalSigner: private key in memory (eth-account)
"""

from scrow.signing.base import SignerBackend, SigningError
from scrow.signing.factory import get_signer
from scrow.signing.local import LocalSigner

__all__ = [
    "SignerBackend",
    "SigningError",
    "LocalSigner",
    "get_signer",
]
