"""Smart Wallet Detector - profitable wallet discovery from DEX swap history."""

__version__ = "0.1.0"
