import base64
import secrets

LICENSE_KEY_PREFIX = "SPRO_"


def generate_license_key() -> str:
    """SPRO_ followed by 24 random bytes, base64url without padding (32 chars)."""
    raw = secrets.token_bytes(24)
    return LICENSE_KEY_PREFIX + base64.urlsafe_b64encode(raw).decode().rstrip("=")


def normalize_hostname(hostname: str) -> str:
    host = (hostname or "").strip().lower()
    # Repeated prefixes are stripped too so normalizing twice is a no-op
    while host.startswith("www."):
        host = host[4:].strip()
    return host
