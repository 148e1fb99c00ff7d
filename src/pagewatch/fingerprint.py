"""Content fingerprints used for change detection."""

from __future__ import annotations

import hashlib

__all__ = ["fingerprint"]


def fingerprint(content: str) -> str:
    """Return the lowercase hex SHA-256 digest of ``content``.

    The content is hashed exactly as given. Whitespace normalisation belongs to
    the extractor so that identical pages always hash to identical values.
    """

    return hashlib.sha256(content.encode("utf-8")).hexdigest()
