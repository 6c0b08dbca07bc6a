"""Safety verdicts produced by the content pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class VerdictSource(str, Enum):
    """Where a verdict's counts came from."""

    PATTERN = "pattern"
    FILE_SCAN = "file_scan"
    URL_REPUTATION = "url_reputation"


@dataclass(frozen=True)
class ScanVerdict:
    """Transient classification of one draft message.

    Never persisted; a stored message always carries a safe verdict.
    """

    malicious: int = 0
    suspicious: int = 0
    harmless: int = 0
    undetected: int = 0
    threat_tokens: tuple[str, ...] = field(default_factory=tuple)
    source: VerdictSource = VerdictSource.PATTERN

    def is_safe(self, threshold: int = 1) -> bool:
        """Return True when below the malicious threshold with no suspicious hits."""
        return self.malicious < threshold and self.suspicious == 0

    @property
    def safe(self) -> bool:
        return self.is_safe()

    @classmethod
    def from_stats(cls, stats: dict[str, object], source: VerdictSource) -> ScanVerdict:
        """Build a verdict from a provider ``stats`` mapping.

        Raises:
            ValueError: If a count is missing or not an integer
        """

        def _count(name: str) -> int:
            value = stats.get(name, 0)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Malformed scan statistic {name!r}: {value!r}")
            return value

        return cls(
            malicious=_count("malicious"),
            suspicious=_count("suspicious"),
            harmless=_count("harmless"),
            undetected=_count("undetected"),
            source=source,
        )
