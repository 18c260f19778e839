"""Domain exception hierarchy for LexAgent.

The chat loop and its collaborators raise these instead of bare
``ValueError`` / ``RuntimeError`` so the chat service can tell an intentional
cancellation from a backend failure without string matching.

Only ``AbortedError`` and ``BackendError`` (and its subclasses) ever escape
the chat loop, and both end inside the SSE stream rather than as an HTTP
status.  ``ToolError`` is converted to a result string by the tool executor
and ``DecodeError`` is swallowed by the stream decoder.
"""


class LexAgentError(Exception):
    """Base for all domain exceptions."""

    def __init__(self, message: str = "An unexpected error occurred"):
        super().__init__(message)


class AbortedError(LexAgentError):
    """The request was cancelled by the user or superseded.

    Never shown to the user as an error.
    """

    def __init__(self, message: str = "Aborted"):
        super().__init__(message)


class BackendError(LexAgentError):
    """The model backend is unreachable or returned something unusable."""

    def __init__(self, message: str = "Model backend error"):
        super().__init__(message)


class MaxRoundsExceededError(BackendError):
    """The model kept requesting tools past ``MAX_TOOL_ROUNDS``."""

    def __init__(self, rounds: int):
        super().__init__(
            f"Model requested tools for more than {rounds} rounds without answering"
        )
        self.rounds = rounds


class ToolError(LexAgentError):
    """A leaf tool failed.  Always turned into a result string, never raised to the loop."""

    def __init__(self, message: str = "Tool error", *, detail: object = None):
        super().__init__(message)
        self.detail = detail


class DecodeError(LexAgentError):
    """A single backend stream line could not be decoded."""

    def __init__(self, message: str = "Malformed stream line", *, line: str = ""):
        super().__init__(message)
        self.line = line


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build the JSON body every non-streaming error response uses.

    ``error`` is what the frontend displays (``"Missing messages or model"``);
    ``detail`` defaults to the same text and carries the validation error list
    for 422s.
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
