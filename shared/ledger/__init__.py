"""
Ledger Module
=============

Abstraction layer for the loan ledger.

Supports:
- Mock (development/testing)
- Testnet / Mainnet (not yet wired)

The ledger only supports point lookups by `(loan_id, commitment)`;
there is no way to enumerate the applications filed against a loan.

Usage:
    from shared.ledger import get_ledger_client

    ledger = get_ledger_client()
    application = await ledger.get_application("7", "0x04a1...")
"""

from shared.ledger.client import (
    ApplicationStatus,
    LedgerClient,
    LedgerEvent,
    LedgerEventType,
    LedgerUnavailableError,
    LoanApplication,
    LoanTerms,
    get_ledger_client,
    reset_ledger_client,
    set_ledger_client,
)
from shared.ledger.mock import MockLedgerClient

__all__ = [
    # Client
    "LedgerClient",
    "get_ledger_client",
    "set_ledger_client",
    "reset_ledger_client",
    "LedgerUnavailableError",
    # Models
    "ApplicationStatus",
    "LedgerEvent",
    "LedgerEventType",
    "LoanApplication",
    "LoanTerms",
    # Implementations
    "MockLedgerClient",
]
