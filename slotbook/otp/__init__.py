from slotbook.otp.codes import generate_code, hash_code, verify_code
from slotbook.otp.engine import OtpEngine

__all__ = ["OtpEngine", "generate_code", "hash_code", "verify_code"]
