"""MC Exchange, a marketplace and escrow backend for motor-carrier authorities."""

__version__ = "0.1.0"
