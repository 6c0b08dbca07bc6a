"""BLAKE3 helpers used to fingerprint message content."""

from __future__ import annotations

from blake3 import blake3


def blake3_hexdigest(data: bytes) -> str:
    """Return the hexadecimal BLAKE3 digest for the supplied bytes."""
    return blake3(data).hexdigest()


def fingerprint(*parts: str) -> str:
    """Fingerprint a sequence of text fields.

    Fields are joined with a unit separator so that ``("ab", "c")`` and
    ``("a", "bc")`` never collide.
    """
    payload = "\x1f".join(parts).encode("utf-8", errors="surrogatepass")
    return blake3_hexdigest(payload)
