"""
Escrow Integrations
===================

Adapters for the external payload store and trustee channels.
"""

from services.escrow.integrations.payload_store import (
    InMemoryPayloadStore,
    IpfsPayloadStore,
    PayloadStore,
    create_payload_store,
)
from services.escrow.integrations.trustees import (
    HttpTrusteeChannel,
    InMemoryTrusteeChannel,
    TrusteeChannel,
    create_trustee_channel,
)


__all__ = [
    "PayloadStore",
    "InMemoryPayloadStore",
    "IpfsPayloadStore",
    "create_payload_store",
    "TrusteeChannel",
    "InMemoryTrusteeChannel",
    "HttpTrusteeChannel",
    "create_trustee_channel",
]
