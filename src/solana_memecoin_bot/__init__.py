"""Decision and risk core of a Solana memecoin paper-trading agent."""

__version__ = "0.1.0"

__all__ = ["__version__"]
