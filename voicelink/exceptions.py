"""Custom exceptions for the credential broker and realtime client."""


class VoicelinkError(Exception):
    """Base exception for voicelink errors."""

    pass


class ConfigError(VoicelinkError):
    """Raised when the broker is started without required configuration."""

    pass


# =============================================================================
# Credential errors (broker side, carried over HTTP to clients)
# =============================================================================


class CredentialError(VoicelinkError):
    """Base exception for credential minting failures.

    Every subclass maps to a stable JSON error code and HTTP status.
    """

    code = "credential_failed"
    http_status = 500

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.details = details

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class RateLimitExceeded(CredentialError):
    """Raised when a caller exceeds its credential quota."""

    code = "rate_limit_exceeded"
    http_status = 429

    def __init__(self, message: str, retry_after: float = 60.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamUnavailable(CredentialError):
    """Raised when the session-minting service fails or is unreachable."""

    code = "sessions_failed"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status = status
        if status is not None and 400 <= status < 600:
            self.http_status = status


class MissingClientSecret(CredentialError):
    """Raised when upstream succeeds but returns no client secret."""

    code = "missing_client_secret"


# =============================================================================
# Client-side errors
# =============================================================================


class NegotiationFailure(VoicelinkError):
    """Raised when the offer/answer handshake fails or times out."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class DeviceAccessDenied(VoicelinkError):
    """Raised when local audio capture cannot be acquired."""

    pass


class MalformedEvent(VoicelinkError):
    """Raised for inbound payloads that are not valid event objects."""

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


class ToolHandlerError(VoicelinkError):
    """Raised when a tool handler fails; returned to the peer as a result."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"{name}: {message}")
        self.name = name
        self.message = message

    def to_result(self) -> dict[str, str]:
        return {"error": "tool_failed", "name": self.name, "message": self.message}


class SessionSuperseded(VoicelinkError):
    """Raised to a connect() caller whose negotiation was replaced by a newer one."""

    pass
