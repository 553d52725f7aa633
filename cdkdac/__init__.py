"""Data availability committee node core: sequence signing, off-chain data serving and L1 sync."""

__version__ = "0.1.0"