from typing import Optional


class ReplaylistError(Exception):
    """Base class for every error raised by the synchronization engine."""


class MissingCredential(ReplaylistError):
    """No credential is stored for the requested provider. Not retried."""

    def __init__(self, provider) -> None:
        name = getattr(provider, "value", provider)
        super().__init__(f"not authenticated for provider {name}")
        self.provider = provider


class InvalidTransition(ReplaylistError):
    """Transfer state machine was asked to make a move it does not allow."""


class ProviderError(ReplaylistError):
    """A provider call failed. Carries the HTTP status and raw body when known."""

    def __init__(self, message: str, provider=None, status: Optional[int] = None,
                 body: str = "") -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status
        self.body = body or ""


class AuthExpired(ProviderError):
    """Provider rejected the credential (HTTP 401). Eligible for one refresh-and-retry."""


class TransientProviderError(ProviderError):
    """Network failure, timeout or 5xx. Treated as a per-track failure."""


class RateLimited(TransientProviderError):
    """Provider throttled the call. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited", **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retry_after_ms = retry_after_ms


class MalformedResponse(ProviderError):
    """Response body was not the JSON shape the adapter expects."""


class CreateFailed(ProviderError):
    """Destination playlist creation was rejected. Fatal for the transfer."""


class AppendFailed(ProviderError):
    """Appending a resolved track to the destination playlist failed."""


class ResolutionFailed(ProviderError):
    """Resolving a source track errored (as opposed to finding nothing)."""


class PlaylistNotFound(ReplaylistError):
    """No playlist with the requested id or name exists in the source library."""
