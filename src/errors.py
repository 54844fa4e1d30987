"""Error taxonomy for the generate → push → deploy pipeline and the voice relay.

Every failure a step can produce is one of the classes below, so callers
branch on the kind (and its structured fields) instead of matching message
text. The connection handlers turn any ``SankaError`` into a single
human-readable event; nothing here tears the socket down.
"""

from __future__ import annotations


class SankaError(Exception):
    """Base class for every pipeline and voice failure."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingCredentialError(SankaError):
    """A step needs a token that neither the message nor the settings provide."""


class GenerationFormatError(SankaError):
    """The model answered with something other than a ``{"files": [...]}`` object."""


class PublishError(SankaError):
    """Repository creation or commit failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class BackendNotReadyError(SankaError):
    """The repo host has not provisioned the default branch yet.

    Recoverable: the publisher retries a bounded number of times and
    escalates to :class:`PublishError` once the attempts are exhausted.
    """

    def __init__(self, message: str, attempt: int) -> None:
        super().__init__(message)
        self.attempt = attempt


class DeployTriggerError(SankaError):
    def __init__(
        self,
        message: str,
        status: int | None = None,
        remote_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.remote_message = remote_message


class DeploymentFailedError(SankaError):
    """The platform reported ERROR or CANCELED for the deployment."""

    def __init__(self, deployment_id: str, status: str, remote_message: str | None) -> None:
        super().__init__(
            f"Deployment failed with status={status}. "
            f"Reason: {remote_message or 'unknown'}"
        )
        self.deployment_id = deployment_id
        self.status = status
        self.remote_message = remote_message


class DeploymentTimeoutError(SankaError):
    def __init__(self, deployment_id: str, last_status: str | None, timeout: float) -> None:
        super().__init__(
            f"Timed out waiting for deployment to be READY (waited {round(timeout)}s). "
            f"Current status: {last_status or 'unknown'}"
        )
        self.deployment_id = deployment_id
        self.last_status = last_status
        self.timeout = timeout


class RecognitionStreamError(SankaError):
    pass


class SynthesisError(SankaError):
    """Every configured voice failed to synthesize the text."""

    def __init__(self, voices: list[str]) -> None:
        super().__init__(f"All TTS voices failed ({', '.join(voices) or 'none configured'})")
        self.voices = voices
