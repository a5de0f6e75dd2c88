"""
Test Configuration
==================

Pytest fixtures for VeilCredit tests.
"""

import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["LEDGER_MODE"] = "mock"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["PAYLOAD_STORE_MODE"] = "memory"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EVENT_WATCHER_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from services.escrow.dependencies import EscrowContainer, reset_container, set_container  # noqa: E402
from services.escrow.integrations import InMemoryPayloadStore, InMemoryTrusteeChannel  # noqa: E402
from shared.database import Base  # noqa: E402
from shared.ledger import MockLedgerClient  # noqa: E402
from shared.zk import CommitmentEngine, FieldCodec  # noqa: E402

import services.escrow.models  # noqa: E402,F401  (registers tables on Base)


LEDGER_EPOCH = datetime(2025, 1, 1, tzinfo=UTC)


@dataclass
class Borrower:
    """Client-side material for one borrower."""

    secret: int
    wallet: str
    identity: str

    @property
    def secret_hex(self) -> str:
        return hex(self.secret)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def codec() -> FieldCodec:
    return FieldCodec.from_settings()


@pytest.fixture
def engine(codec: FieldCodec) -> CommitmentEngine:
    return CommitmentEngine(codec)


@pytest.fixture
def make_borrower(engine: CommitmentEngine):
    """Factory for borrowers with distinct wallets."""
    counter = iter(range(1, 10_000))

    def factory() -> Borrower:
        secret = engine.generate_secret()
        wallet = hex(0xB0B0_0000 + next(counter))
        identity = engine.derive_identity_commitment(secret, wallet).hex
        return Borrower(secret=secret, wallet=wallet, identity=identity)

    return factory


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database per test."""
    db_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await db_engine.dispose()


@pytest.fixture
def ledger() -> MockLedgerClient:
    """Fresh mock ledger starting at a fixed time."""
    return MockLedgerClient(start_time=LEDGER_EPOCH)


@pytest.fixture
def channel() -> InMemoryTrusteeChannel:
    return InMemoryTrusteeChannel()


@pytest.fixture
def payload_store() -> InMemoryPayloadStore:
    return InMemoryPayloadStore()


@pytest.fixture
def container(
    ledger: MockLedgerClient,
    channel: InMemoryTrusteeChannel,
    payload_store: InMemoryPayloadStore,
    session_factory: async_sessionmaker[AsyncSession],
    codec: FieldCodec,
) -> EscrowContainer:
    """Fully wired escrow service graph over test collaborators."""
    return EscrowContainer.build(
        ledger=ledger,
        channel=channel,
        payload_store=payload_store,
        session_factory=session_factory,
        codec=codec,
    )


@pytest_asyncio.fixture
async def escrow_client(container: EscrowContainer) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the Escrow Service."""
    from services.escrow.main import app

    set_container(container)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    reset_container()
