"""VinVault: pay-per-view vehicle history reports."""

__version__ = "1.0.0"
