"""Content fingerprints used to detect stale cached analyses."""

import hashlib


def compute_fingerprint(content: str) -> str:
    """Deterministic hash of a source file's content.

    Line endings are normalised first.
    """
    normalized = content.replace("\r\n", "\n")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
