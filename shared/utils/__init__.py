"""
Shared utilities
"""

from .crypto import CryptoService
from .logging import configure_logging

__all__ = [
    "CryptoService",
    "configure_logging",
]
