"""Application settings and configuration.

This module defines all configuration options for the Ephemeral Relay service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SUSPICIOUS_PATTERNS = [
    "virus", "malware", "trojan", "ransomware", "keylogger",
    ".exe", ".msi", ".bat", ".cmd", ".scr", ".dll",
    "crack", "keygen", "serial", "patch", "pirate",
    "hack", "exploit", "bypass", "cheat", "trainer",
    "free.download", "installer", "nulled", "warez",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Ephemeral Relay", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Message lifecycle
    message_ttl_seconds: float = Field(default=120.0, alias="MESSAGE_TTL_SECONDS")
    sweep_interval_seconds: float = Field(default=30.0, alias="SWEEP_INTERVAL_SECONDS")

    # Remote scanning (VirusTotal); unset key means pattern-only scanning
    virustotal_api_key: str | None = Field(default=None, alias="VIRUSTOTAL_API_KEY")
    virustotal_base_url: str = Field(
        default="https://www.virustotal.com/api/v3",
        alias="VIRUSTOTAL_BASE_URL",
    )
    scan_timeout_seconds: float = Field(default=45.0, alias="SCAN_TIMEOUT_SECONDS")
    scan_upload_timeout_seconds: float = Field(
        default=30.0,
        alias="SCAN_UPLOAD_TIMEOUT_SECONDS",
    )
    scan_lookup_timeout_seconds: float = Field(
        default=10.0,
        alias="SCAN_LOOKUP_TIMEOUT_SECONDS",
    )
    scan_poll_interval_seconds: float = Field(default=15.0, alias="SCAN_POLL_INTERVAL_SECONDS")
    scan_malicious_threshold: int = Field(default=1, alias="SCAN_MALICIOUS_THRESHOLD")

    # Local lexical scan
    suspicious_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SUSPICIOUS_PATTERNS),
        alias="SUSPICIOUS_PATTERNS",
    )

    # Realtime transport
    ws_max_connections: int = Field(default=500, alias="WS_MAX_CONNECTIONS")
    ws_receive_timeout_seconds: float = Field(default=30.0, alias="WS_RECEIVE_TIMEOUT_SECONDS")
    ws_send_timeout_seconds: float = Field(default=5.0, alias="WS_SEND_TIMEOUT_SECONDS")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["http://localhost:5173"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def scanner_configured(self) -> bool:
        """Return True when a remote scanning provider can be used."""
        return bool(self.virustotal_api_key)

    @property
    def normalized_patterns(self) -> list[str]:
        """Return the denylist lower-cased with blanks and duplicates removed.

        Returns:
            Ordered list of unique lower-case tokens
        """
        seen: list[str] = []
        for pattern in self.suspicious_patterns:
            token = pattern.strip().lower()
            if token and token not in seen:
                seen.append(token)
        return seen


settings = Settings()
