"""
Escrow Core
===========

Pure cryptographic building blocks: Shamir sharing over GF(2^521 - 1) and
identity sealing with AES-256-GCM.

Version: 0.1.0
"""

from services.escrow.core.sealing import (
    EncryptedIdentityPayload,
    EscrowKey,
    KeyShare,
    key_check_tag,
    reconstruct,
    seal,
    share_digest,
    unseal,
)
from services.escrow.core.shamir import PRIME, combine_shares, split_secret


__all__ = [
    # Sharing
    "PRIME",
    "split_secret",
    "combine_shares",
    # Sealing
    "EscrowKey",
    "KeyShare",
    "EncryptedIdentityPayload",
    "seal",
    "reconstruct",
    "unseal",
    "key_check_tag",
    "share_digest",
]
