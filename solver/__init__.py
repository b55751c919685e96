"""Cross-chain market-making solver."""

__version__ = "0.1.0"
