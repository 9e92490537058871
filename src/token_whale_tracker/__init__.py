"""Token Whale Tracker - Bonding-curve token scoring and whale transfer alerts."""

__version__ = "0.1.0"
