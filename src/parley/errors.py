"""Exceptions that end a run.

Every exception here carries a machine-readable ``code`` which the runner
copies into the ``RUN_ERROR`` event.  Failures attributable to a single
frame or a single tool call never raise; they are recovered where they occur.
"""


class ParleyError(Exception):
    """Base class for run-level failures."""

    code = "AGENT_ERROR"


class UpstreamError(ParleyError):
    """The completion endpoint could not produce a stream."""

    code = "UPSTREAM_ERROR"


class UpstreamHTTPError(UpstreamError):
    """The completion endpoint answered with a non-2xx status."""

    code = "UPSTREAM_HTTP_ERROR"

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        detail = f": {body[:200]}" if body else ""
        super().__init__(f"Upstream API error {status_code}{detail}")


class UpstreamUnavailableError(UpstreamError):
    """Connecting to or reading from the completion endpoint failed."""

    code = "UPSTREAM_UNREACHABLE"


class NoMessageError(ParleyError):
    """A completion stream ended without a single assistant delta."""

    code = "NO_MESSAGE"

    def __init__(self, message: str = "No message in response"):
        super().__init__(message)


class MaxRoundsExceededError(ParleyError):
    """The model kept requesting tools past the round limit."""

    code = "MAX_ROUNDS_EXCEEDED"

    def __init__(self, max_rounds: int):
        self.max_rounds = max_rounds
        super().__init__(
            f"Maximum rounds reached ({max_rounds}) without a final answer"
        )
