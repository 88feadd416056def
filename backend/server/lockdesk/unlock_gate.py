import re

from .errors import SecurityKeyRejected

SECURITY_KEY_LENGTH = 20
_WHITESPACE = re.compile(r"\s+")


def normalize_key(raw: str | None) -> str:
    if raw is None:
        return ""
    if not isinstance(raw, str):
        raise SecurityKeyRejected(f"security key must be text, got {type(raw).__name__}")
    return _WHITESPACE.sub("", raw)


def validate(raw: str | None) -> str:
    """Strip all whitespace from a typed-in security key and check its length.

    The key is not checked against any stored secret here; it is forwarded to
    the device, which holds the real one.
    """
    key = normalize_key(raw)
    if len(key) != SECURITY_KEY_LENGTH:
        raise SecurityKeyRejected(
            f"security key must be {SECURITY_KEY_LENGTH} characters, got {len(key)}"
        )
    return key


def mask(key: str | None) -> str | None:
    if not key:
        return key
    if len(key) <= 4:
        return "*" * len(key)
    return "*" * (len(key) - 4) + key[-4:]
