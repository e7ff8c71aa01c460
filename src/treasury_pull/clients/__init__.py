"""
Client module for the treasury pull service.

Provides an httpx-based client that requests, signs and submits compliance
declarations and triggers delegated transfers.
"""

from .http_client import TreasuryClient

__all__ = ["TreasuryClient"]
