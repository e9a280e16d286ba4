"""Email validation utilities with TLD checking."""

import re
from typing import Tuple


# List of valid top-level domains (TLDs)
# Common generic, country and academic TLDs; extend as new schools sign up
VALID_TLDS = {
    # Generic TLDs
    "com", "org", "net", "edu", "gov", "mil", "int",
    # Country code TLDs
    "uk", "us", "ca", "au", "de", "fr", "it", "es", "nl", "be", "ch", "at", "se", "no", "dk", "fi",
    "pl", "cz", "ie", "pt", "gr", "ro", "hu", "jp", "cn", "kr", "in", "sg", "my", "th", "ph",
    "id", "vn", "tw", "hk", "nz", "za", "br", "mx", "ar", "cl", "co", "ng", "ke", "gh",
    "ae", "sa", "il", "tr", "eg", "pk", "bd", "lk", "np", "ru", "ua",
    # New gTLDs
    "io", "ai", "app", "dev", "tech", "online", "site", "school", "academy", "info", "biz",
    # Academic/Educational
    "ac", "sch", "edu",
}

# Regex pattern for basic email format validation
EMAIL_PATTERN = re.compile(
    r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> Tuple[bool, str]:
    """
    Validate email format and TLD.

    Returns:
        Tuple of (is_valid, error_message); the message is empty when valid
    """
    if not email:
        return False, "Email address is required."

    email = normalize_email(email)

    if len(email) > 255:
        return False, "Email address is too long."

    if not EMAIL_PATTERN.match(email):
        return False, "Please enter a valid email address format."

    local_part, domain = email.split("@", 1)
    if not local_part or len(local_part) > 64:
        return False, "Invalid email address format."

    tld = domain.rsplit(".", 1)[-1]
    if tld not in VALID_TLDS:
        return False, (
            "Email address must use a valid top-level domain (e.g., .com, .edu, .org). "
            f"'{tld}' is not recognized as a valid domain."
        )

    return True, ""


def validate_email_format(email: str) -> str:
    """Return an error message, or an empty string when the address is valid."""
    is_valid, error_message = is_valid_email(email)
    return error_message
