"""Signature-based delegated ERC20 transfers into a treasury."""

__version__ = "0.1.0"
