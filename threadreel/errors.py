"""Error taxonomy for the generation pipeline.

Fetch, schema and voice errors are absorbed by the stage that raises them
and replaced with fallback data. Render errors are fatal to the request.
Cancellation is a terminal state, not a failure.
"""
from typing import Optional


class ThreadReelError(Exception):
    """Base class for all pipeline errors."""


class FetchError(ThreadReelError):
    """The thread source was unreachable or the URL was invalid."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class SchemaValidationError(ThreadReelError):
    """A generative-text response did not match the script schema."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class VoiceSynthesisError(ThreadReelError):
    """Speech synthesis failed for one line."""

    def __init__(self, message: str, line_index: Optional[int] = None):
        super().__init__(message)
        self.line_index = line_index


class VoiceServiceUnavailable(VoiceSynthesisError):
    """The voice service is unreachable or rejected our credentials."""


class RenderError(ThreadReelError):
    """The renderer timed out, exited non-zero or produced no output."""

    def __init__(
        self,
        message: str,
        script_id: Optional[str] = None,
        diagnostics: str = "",
        exit_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.script_id = script_id
        self.diagnostics = diagnostics
        self.exit_code = exit_code


class CancellationError(ThreadReelError):
    """The job was cancelled while a stage was running."""

    def __init__(self, script_id: str):
        super().__init__(f"Generation cancelled for script {script_id}")
        self.script_id = script_id
