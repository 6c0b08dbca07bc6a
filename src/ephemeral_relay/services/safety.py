"""Content safety pipeline.

Classifies a draft message as safe or blocked and renders the asymmetric
views the delivery contract requires: on a block the receiver only ever
sees a placeholder, while the sender keeps the original content annotated
with the reason.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from ephemeral_relay.models import ContentKind, Message, ScanVerdict, VerdictSource
from ephemeral_relay.schemas.events import SYSTEM_SENDER, DeliverEvent, SendRequest
from ephemeral_relay.services.scanner import ScanProvider, ScanProviderError

# Configure logger for this module
logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"[a-zA-Z][a-zA-Z0-9+.\-]*://[^\s<>\"']+")
DATA_URL_PREFIX = re.compile(r"^data:[^,]*;base64,", re.IGNORECASE)


@dataclass(frozen=True)
class SafetyDecision:
    """Outcome of running one draft through the pipeline."""

    pattern_verdict: ScanVerdict
    remote_verdict: ScanVerdict | None
    blocked: bool
    reason: str | None = None

    @property
    def threat_tokens(self) -> list[str]:
        return list(self.pattern_verdict.threat_tokens)

    @property
    def remote_scan_executed(self) -> bool:
        return self.remote_verdict is not None


def detect_url(text: str) -> str | None:
    """Return the first ``scheme://token`` found in ``text``."""
    match = URL_PATTERN.search(text)
    return match.group(0) if match else None


def decode_payload(content: str) -> bytes | None:
    """Decode a base64 or base64 data-URL payload, or None if it is neither."""
    encoded = DATA_URL_PREFIX.sub("", content.strip(), count=1)
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None


class ContentSafetyPipeline:
    """Runs the remote scan and the local lexical scan over a draft."""

    def __init__(
        self,
        scanner: ScanProvider,
        patterns: Sequence[str],
        *,
        timeout_seconds: float,
        malicious_threshold: int = 1,
    ) -> None:
        self.scanner = scanner
        self.patterns = [p.lower() for p in patterns if p]
        self.timeout_seconds = float(timeout_seconds)
        self.malicious_threshold = max(1, int(malicious_threshold))

    def pattern_scan(self, text: str) -> ScanVerdict:
        """Match ``text`` against the denylist (case-insensitive substring)."""
        lowered = text.lower()
        detected = tuple(pattern for pattern in self.patterns if pattern in lowered)
        if detected:
            logger.info("Pattern detection found: %s", ", ".join(detected))
            return ScanVerdict(malicious=len(detected), threat_tokens=detected)
        return ScanVerdict(harmless=1)

    def _lexical_target(self, draft: SendRequest) -> str:
        if draft.filename:
            return draft.filename
        if draft.kind.is_textual:
            return draft.content
        return ""

    async def _remote_verdict(self, draft: SendRequest) -> ScanVerdict | None:
        if draft.kind.is_textual:
            url = detect_url(draft.content)
            if url is None:
                return None
            call = self.scanner.check_url(url)
        else:
            data = decode_payload(draft.content)
            if data is None:
                logger.debug("Payload for %s is not base64; skipping remote scan", draft.filename)
                return None
            call = self.scanner.scan_file(data, draft.filename or "upload.bin")

        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Remote scan timed out after %.1fs; using pattern verdict only",
                self.timeout_seconds,
            )
        except ScanProviderError as e:
            logger.warning("Remote scan failed: %s; using pattern verdict only", e)
        return None

    async def evaluate(self, draft: SendRequest) -> SafetyDecision:
        """Classify ``draft``.

        Blocked if the lexical scan matched anything, or if a remote verdict
        was obtained and failed the threshold. A missing remote verdict never
        blocks on its own.
        """
        remote = await self._remote_verdict(draft)
        local = self.pattern_scan(self._lexical_target(draft))

        reason: str | None = None
        if local.threat_tokens:
            reason = "Suspicious patterns detected: " + ", ".join(local.threat_tokens)
        elif remote is not None and not remote.is_safe(self.malicious_threshold):
            label = "file scan" if remote.source is VerdictSource.FILE_SCAN else "URL reputation"
            reason = (
                f"Flagged by {label}: {remote.malicious} malicious, "
                f"{remote.suspicious} suspicious"
            )

        return SafetyDecision(
            pattern_verdict=local,
            remote_verdict=remote,
            blocked=reason is not None,
            reason=reason,
        )


def _describe(kind: ContentKind) -> str:
    return {
        ContentKind.TEXT: "Message",
        ContentKind.LINK: "Link",
        ContentKind.TEXTFILE: "Text file",
        ContentKind.PDF: "PDF",
    }.get(kind, kind.value.capitalize())


def _base_view(message: Message) -> dict[str, object]:
    return {
        "id": message.id,
        "sender": message.sender,
        "to": message.recipient,
        "kind": message.kind,
        "created_at": message.created_at.isoformat(),
        "filename": message.filename,
        "mime_type": message.mime_type,
        "size_bytes": message.size_bytes,
    }


def render_safe_views(message: Message) -> tuple[DeliverEvent, DeliverEvent]:
    """Return ``(sender_view, receiver_view)`` carrying identical content."""
    base = _base_view(message)
    sender_view = DeliverEvent(**base, content=message.content, is_own=True)
    receiver_view = DeliverEvent(**base, content=message.content, is_own=False)
    return sender_view, receiver_view


def render_blocked_views(
    message: Message, decision: SafetyDecision
) -> tuple[DeliverEvent, DeliverEvent]:
    """Return ``(sender_view, receiver_view)`` for a blocked draft.

    The receiver view never contains the original content or filename.
    """
    base = _base_view(message)
    tokens = decision.threat_tokens
    sender_view = DeliverEvent(
        **base,
        content=message.content,
        is_own=True,
        was_blocked=True,
        threat_tokens=tokens,
        block_reason=decision.reason,
    )
    receiver_view = DeliverEvent(
        id=message.id,
        sender=message.sender,
        to=message.recipient,
        kind=message.kind,
        created_at=message.created_at.isoformat(),
        content=f"{_describe(message.kind)} from {message.sender} was blocked by the safety scan",
        is_own=False,
        is_system=True,
        is_blocked=True,
        threat_tokens=tokens,
        block_reason=decision.reason,
    )
    return sender_view, receiver_view


def render_scan_notice(
    notice_id: str, message: Message, decision: SafetyDecision, *, own: bool
) -> DeliverEvent:
    """Informational notice confirming a remote scan passed; never stored."""
    verdict = decision.remote_verdict
    counts = (
        f"{verdict.malicious} malicious, {verdict.suspicious} suspicious, "
        f"{verdict.harmless} harmless"
        if verdict
        else None
    )
    label = message.filename or _describe(message.kind)
    return DeliverEvent(
        id=notice_id,
        sender=SYSTEM_SENDER,
        to=message.recipient,
        kind=ContentKind.TEXT,
        created_at=message.created_at.isoformat(),
        content=f"{label} passed the security scan",
        is_own=own,
        is_system=True,
        scan_info=counts,
    )
