"""Authentication utilities: password hashing and session tokens."""

import secrets

from passlib.context import CryptContext

# Pin the "2b" ident; newer bcrypt releases reject the probe passlib runs
# with other idents
PWD_CONTEXT = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=12,
)

MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password for storage."""
    return PWD_CONTEXT.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plaintext password against its hash."""
    return PWD_CONTEXT.verify(plain_password, password_hash)


def password_problem(plain_password: str) -> str:
    """Return an error message for an unusable password, or an empty string."""
    if not plain_password:
        return "Password is required."
    if len(plain_password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
    if len(plain_password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return f"Password must be at most {MAX_PASSWORD_BYTES} bytes."
    return ""


def create_session_token() -> str:
    """Generate a random URL-safe bearer token."""
    return secrets.token_urlsafe(32)
