"""
VeilCredit Shared Library
=========================

Common utilities, configuration, and abstractions shared by the services.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: Async SQL client (SQLAlchemy)
    - ledger: Loan ledger interface (mock/testnet/mainnet)
    - zk: Field codec, commitment engine, activity prover adapter
    - models: Shared Pydantic models

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "VeilCredit Team"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
