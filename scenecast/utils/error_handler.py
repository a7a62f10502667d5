"""Error Handler - turns pipeline failures into human-readable messages."""

from typing import Optional

from scenecast.core.errors import (
    EncodeCancelledError,
    EncodeError,
    EncodeTimeoutError,
    SynthesisError,
    SynthesisFailureReason,
    UploadError,
)


def format_error_message(
    operation: str,
    error: Exception,
    context: Optional[dict] = None,
    suggestion: Optional[str] = None,
) -> str:
    """
    Format a user-friendly error message for logs.

    Args:
        operation: What operation was being performed (e.g., "Encoding video")
        error: The exception that occurred
        context: Additional context (e.g., {"job_id": "abc"})
        suggestion: Optional suggestion for how to fix the issue

    Returns:
        Formatted error message
    """
    context_str = ""
    if context:
        context_str = f" ({', '.join(f'{k}={v}' for k, v in context.items())})"

    message = f"❌ {operation} failed{context_str}\n"
    message += f"   Error: {type(error).__name__}: {error}"

    if suggestion:
        message += f"\n   💡 Suggestion: {suggestion}"

    return message


def get_fallback_suggestion(error: Exception) -> Optional[str]:
    """Suggest a fix for a known failure, if there is one."""
    if isinstance(error, SynthesisError):
        if error.reason == SynthesisFailureReason.UNAUTHORIZED:
            return "Check ELEVENLABS_API_KEY in your .env file."
        if error.reason == SynthesisFailureReason.QUOTA_EXCEEDED:
            return "Speech quota exhausted or rate limited. Wait or upgrade the plan, then retry."
        if error.reason == SynthesisFailureReason.MALFORMED_INPUT:
            return "The narration text was rejected. Check the scene narration for unsupported content."
        return None
    if isinstance(error, EncodeTimeoutError):
        return "Encoding exceeded ENCODE_TIMEOUT_SECONDS. Raise the limit or shorten the video."
    if isinstance(error, EncodeCancelledError):
        return None
    if isinstance(error, EncodeError):
        return "Check that ffmpeg is installed and the encoder diagnostics in the log."
    if isinstance(error, UploadError):
        return "Check storage credentials and connectivity. The job can be retried."
    return None


def describe_failure(error: BaseException) -> str:
    """Return the non-empty message recorded on a failed job."""
    message = str(error).strip()
    if not message:
        message = f"{type(error).__name__} raised without a message"
    return message
