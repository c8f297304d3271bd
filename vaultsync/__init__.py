"""Local/remote reconciliation and media upload engine"""

__version__ = "1.0.0"
