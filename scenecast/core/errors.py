"""Exception taxonomy for the rendering pipeline."""

from enum import Enum
from typing import Optional


class RenderPipelineError(Exception):
    """Base class for every failure the pipeline records on a job."""

    retryable: bool = False

    def __init__(self, message: str, *, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class InputValidationError(RenderPipelineError):
    """The scene list handed to the pipeline is unusable."""


class SynthesisFailureReason(str, Enum):
    """Why the speech provider refused or failed a request."""

    UNAUTHORIZED = "unauthorized"
    QUOTA_EXCEEDED = "quota_exceeded"
    MALFORMED_INPUT = "malformed_input"
    PROVIDER_ERROR = "provider_error"
    NETWORK = "network"


_RETRYABLE_SYNTHESIS_REASONS = {
    SynthesisFailureReason.QUOTA_EXCEEDED,
    SynthesisFailureReason.PROVIDER_ERROR,
    SynthesisFailureReason.NETWORK,
}


class SynthesisError(RenderPipelineError):
    """Speech synthesis failed; never retried inside the adapter."""

    def __init__(
        self,
        message: str,
        reason: SynthesisFailureReason = SynthesisFailureReason.PROVIDER_ERROR,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, retryable=reason in _RETRYABLE_SYNTHESIS_REASONS)
        self.reason = reason
        self.status_code = status_code


class TimingMapError(RenderPipelineError):
    """A character timing map violates its contract (e.g. mismatched array lengths)."""


class AssetGenerationError(RenderPipelineError):
    """A frame could not be rendered even with the neutral fallback."""


class EncodeError(RenderPipelineError):
    """The encoder failed, exited nonzero or produced no output."""

    retryable = True

    def __init__(self, message: str, return_code: Optional[int] = None, diagnostics: str = ""):
        super().__init__(message)
        self.return_code = return_code
        self.diagnostics = diagnostics


class EncodeTimeoutError(EncodeError):
    """The encoder ran past its deadline and was terminated."""


class EncodeCancelledError(EncodeError):
    """The encoder was terminated because the job was cancelled."""

    retryable = False


class UploadError(RenderPipelineError):
    """The storage provider rejected or failed the upload."""

    retryable = True


class JobStateError(RenderPipelineError):
    """An operation tried to modify a job that already reached a terminal state."""


class JobNotFoundError(RenderPipelineError, LookupError):
    """No status record exists for the requested job."""


class JobCancelledError(RenderPipelineError):
    """The caller cancelled the job between stages."""
