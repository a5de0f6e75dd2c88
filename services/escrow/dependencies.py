"""
Escrow Service Wiring
=====================

Builds the service graph once per process and hands it to route handlers.

Version: 0.1.0
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.escrow.integrations import (
    PayloadStore,
    TrusteeChannel,
    create_payload_store,
    create_trustee_channel,
)
from services.escrow.services import (
    BindingRegistry,
    CommitmentIndex,
    DisclosureOrchestrator,
    DisputeScheduler,
    EscrowService,
    LedgerEventWatcher,
)
from shared.database import DatabaseClient
from shared.ledger import LedgerClient, get_ledger_client
from shared.logging import get_logger
from shared.zk import CommitmentEngine, FieldCodec


logger = get_logger(__name__)


@dataclass
class EscrowContainer:
    """Every collaborator of the escrow service."""

    ledger: LedgerClient
    channel: TrusteeChannel
    payload_store: PayloadStore
    engine: CommitmentEngine
    bindings: BindingRegistry
    index: CommitmentIndex
    escrow: EscrowService
    scheduler: DisputeScheduler
    disclosure: DisclosureOrchestrator
    watcher: LedgerEventWatcher

    @classmethod
    def build(
        cls,
        ledger: LedgerClient | None = None,
        channel: TrusteeChannel | None = None,
        payload_store: PayloadStore | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        codec: FieldCodec | None = None,
    ) -> "EscrowContainer":
        if ledger is None:
            ledger = get_ledger_client()
        if channel is None:
            channel = create_trustee_channel()
        if payload_store is None:
            payload_store = create_payload_store()
        if session_factory is None:
            session_factory = DatabaseClient.get_session_factory()
        if codec is None:
            codec = FieldCodec.from_settings()
        engine = CommitmentEngine(codec)

        bindings = BindingRegistry(session_factory, codec)
        index = CommitmentIndex(ledger, session_factory, codec)
        escrow = EscrowService(channel, payload_store, bindings, session_factory, engine)
        scheduler = DisputeScheduler(session_factory, clock=ledger.current_timestamp, codec=codec)
        disclosure = DisclosureOrchestrator(ledger, bindings, escrow, scheduler, engine)
        scheduler.set_callback(disclosure.handle_dispute_fire)
        watcher = LedgerEventWatcher(ledger, index, scheduler, session_factory)

        return cls(
            ledger=ledger,
            channel=channel,
            payload_store=payload_store,
            engine=engine,
            bindings=bindings,
            index=index,
            escrow=escrow,
            scheduler=scheduler,
            disclosure=disclosure,
            watcher=watcher,
        )


# Global container instance
_container: EscrowContainer | None = None


def get_container() -> EscrowContainer:
    """Get (building on first use) the process-wide container."""
    global _container
    if _container is None:
        _container = EscrowContainer.build()
        logger.info("escrow_container_built")
    return _container


def set_container(container: EscrowContainer) -> None:
    global _container
    _container = container


def reset_container() -> None:
    global _container
    _container = None
