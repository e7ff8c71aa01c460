from .apps import TreasuryServer, create_app, status_code_for
from .config import TreasuryConfig

__all__ = [
    "TreasuryServer",
    "create_app",
    "status_code_for",
    "TreasuryConfig",
]
