from __future__ import annotations


class ExecIntelError(Exception):
    """Base error for ExecIntel."""


class ValidationError(ExecIntelError):
    """Input rejected before any write; names the failing field."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class NotFoundError(ExecIntelError):
    """Entity absent or owned by another tenant."""


class InvalidTransitionError(ExecIntelError):
    """Report status change not permitted from the current state."""

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(message or f"Cannot transition report from {current} to {target}")
        self.current = current
        self.target = target


class UpstreamFailure(ExecIntelError):
    """Data-store or third-party failure wrapped with a stable message prefix."""

    def __init__(self, prefix: str, cause: BaseException | str) -> None:
        super().__init__(f"{prefix}: {cause}")
        self.prefix = prefix


class ProviderConfigError(ExecIntelError):
    """Missing or invalid provider configuration."""


class LLMAuthError(ExecIntelError):
    """LLM provider authentication/authorization failure."""


class LLMTimeoutError(ExecIntelError):
    """LLM request exceeded the generation deadline."""


class LLMError(ExecIntelError):
    """LLM provider request failure."""


class InsightProviderError(ExecIntelError):
    """Upstream insight provider failed to produce a block."""


class IntegrationUnavailableError(ExecIntelError):
    """External integration short-circuited by an open breaker."""


class ConflictError(ExecIntelError):
    """Concurrent write lost the optimistic version check."""
