import hashlib
from typing import Optional


def fingerprint(script: str) -> str:
    """Return the SHA-256 hex digest of a script body.

    Observed script state is recorded as this digest and compared in place of
    the script text.
    """
    return hashlib.sha256(script.encode("utf-8")).hexdigest()


def script_changed(script: Optional[str], known_fingerprint: Optional[str]) -> bool:
    """Check whether ``script`` differs from the content behind ``known_fingerprint``."""
    if script is None:
        return known_fingerprint is not None
    return fingerprint(script) != known_fingerprint
