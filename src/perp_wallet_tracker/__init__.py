"""Perp Wallet Tracker - GMX wallet discovery and exposure classification."""

__version__ = "0.1.0"
