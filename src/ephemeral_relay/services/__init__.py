"""Business logic services for the relay."""

from .delivery import DeliveryOutcome, DeliveryRouter
from .engine import RelayEngine
from .lifecycle import MessageLifecycleStore
from .presence import PresenceRegistry
from .safety import ContentSafetyPipeline, SafetyDecision
from .scanner import NullScanner, ScanProviderError, VirusTotalScanner, build_scanner

__all__ = [
    "ContentSafetyPipeline",
    "DeliveryOutcome",
    "DeliveryRouter",
    "MessageLifecycleStore",
    "NullScanner",
    "PresenceRegistry",
    "RelayEngine",
    "SafetyDecision",
    "ScanProviderError",
    "VirusTotalScanner",
    "build_scanner",
]
