"""Exception hierarchy for the Granola credential flow.

Every failure the login and refresh paths can hit has its own type so the
CLI can report it precisely. None of these are retried; the operator re-runs
the command.
"""


class GranolaAuthError(Exception):
    """Base exception for all credential-acquisition errors."""

    pass


class DiscoveryError(GranolaAuthError):
    """Resolving the authorization server from the resource URL failed."""

    pass


class RegistrationError(GranolaAuthError):
    """Dynamic Client Registration failed.

    Attributes:
        status_code: HTTP status returned by the registration endpoint, if any
        body: Raw response body, kept for diagnosis
    """

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ListenerError(GranolaAuthError):
    """The local redirect listener could not be started or used."""

    pass


class PortInUseError(ListenerError):
    """The fixed callback port is already bound by another process."""

    def __init__(self, port: int):
        super().__init__(
            f"Port {port} is already in use. Free the port and try again."
        )
        self.port = port


class CallbackTimeoutError(ListenerError):
    """No redirect reached the listener before the deadline."""

    pass


class AuthorizationError(GranolaAuthError):
    """The interactive authorization step failed.

    Attributes:
        kind: One of "timeout", "remote-error", "state-mismatch",
            "malformed-callback"
        error: OAuth error code reported by the authorization server
            (only for "remote-error")
    """

    TIMEOUT = "timeout"
    REMOTE_ERROR = "remote-error"
    STATE_MISMATCH = "state-mismatch"
    MALFORMED_CALLBACK = "malformed-callback"

    def __init__(self, kind: str, message: str, error: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.error = error


class TokenExchangeError(GranolaAuthError):
    """The token endpoint rejected a code exchange or refresh.

    Attributes:
        status_code: HTTP status returned by the token endpoint, if any
        body: Raw response body, kept for diagnosis
    """

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MissingRefreshMaterialError(GranolaAuthError):
    """Stored credentials lack what a refresh grant needs."""

    pass


class CredentialStoreError(GranolaAuthError):
    """Reading or writing the credential file failed."""

    pass
