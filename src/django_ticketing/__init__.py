"""Event registration, payment verification, and ticket issuance for Django."""

__version__ = "0.1.0"
