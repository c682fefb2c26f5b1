"""Lead registration, phone OTP verification and demo-slot booking backend."""

__version__ = "1.0.0"
