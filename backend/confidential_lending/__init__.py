"""Confidential Lending - encrypted credit scoring and loan lifecycle service."""
__version__ = "1.0.0"
