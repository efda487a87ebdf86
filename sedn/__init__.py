"""Sedn gasless multi-chain stablecoin transfer execution."""

__version__ = "0.1.0"
