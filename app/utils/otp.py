import hashlib
import hmac
import secrets


def generate_otp_code() -> str:
    """Six decimal digits, zero padded, from the OS CSPRNG."""
    return f"{secrets.randbelow(1_000_000):06d}"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def hash_code(email: str, code: str, secret: str) -> str:
    """
    HMAC-SHA256 of "<email>:<code>" keyed with the server OTP secret, hex encoded.
    Callers pass the normalized email; the same normalization must be used
    when the code is issued and when it is checked.
    """
    if not secret:
        raise ValueError("OTP_SECRET is not set")
    message = f"{email}:{code}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
