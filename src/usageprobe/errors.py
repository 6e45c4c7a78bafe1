"""
usage acquisition errors. Every failure that reaches a caller is
one of these, and str(error) is the single message shown to the user.
"""


class UsageError(Exception):
    kind: "str" = "unknown"

    def __init__(self, message: "str") -> "None":
        super().__init__(message)
        self.message = message


class AuthenticationError(UsageError):
    """
    the session or token was rejected, expired or is otherwise
    unusable.
    """

    kind = "auth"


class NoCredentialsError(UsageError):
    """
    no cookie, session or token was found anywhere, so nothing
    was ever authenticated.
    """

    kind = "no_credentials"


class MalformedResponseError(UsageError):
    kind = "malformed"


class ParseError(MalformedResponseError):
    """
    captured terminal text could not be turned into a snapshot.
    """

    kind = "parse"


class DataNotReadyError(ParseError):
    pass


class ServerError(UsageError):
    kind = "server"

    def __init__(
        self,
        status_code: "int",
        body: "str" = "",
        message: "str | None" = None,
    ) -> "None":
        if message is None:
            message = f"HTTP {status_code}"
            if body:
                message = f"{message}: {body.strip()[:200]}"
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NetworkError(UsageError):
    kind = "network"


class FetchTimeoutError(UsageError):
    kind = "timeout"


class ToolMissingError(UsageError):
    """
    the external CLI binary could not be located or launched.
    """

    kind = "tool_missing"


class UpdateRequiredError(UsageError):
    kind = "update_required"


class UnexpectedError(UsageError):
    """
    a provider failed with something outside this hierarchy; the
    original exception is chained as __cause__.
    """

    kind = "unknown"


# failures worth one widened-geometry retry of a terminal capture
RETRYABLE_CAPTURE_ERRORS: "tuple[type[UsageError], ...]" = (
    ParseError,
    FetchTimeoutError,
)
