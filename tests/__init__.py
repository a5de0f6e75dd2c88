"""
VeilCredit Test Suite
=====================

Test organization:
- tests/unit/             - Shared library and pure escrow core (no I/O)
- tests/services/escrow/  - Escrow services and HTTP routes (sqlite, mock ledger)

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
    pytest --cov=shared             # With coverage
"""
