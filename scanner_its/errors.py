"""Exception hierarchy shared by every harness component.

Local contract violations (``ConfigError``, ``SessionStateError``) are raised
before any process is started or any HTTP request is sent. Failures reported
by the scanner, the build or the server are ``ExternalBuildFailure`` /
``ExternalServiceFailure``; running out of time is always ``OperationTimeout``.
"""


class HarnessError(Exception):
    """Base exception for all harness errors."""


class ConfigError(HarnessError):
    """Raised when a configuration file or a begin/end config is invalid."""


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

class SessionStateError(HarnessError):
    """Raised when begin/build/end are called out of order."""


class SessionAlreadyActive(SessionStateError):
    """Raised when ``begin`` is issued for a key that already has a session."""


class SessionNotBuilt(SessionStateError):
    """Raised when ``end`` is issued before the build has run."""


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------

class ExternalBuildFailure(HarnessError):
    """Raised when the native build exits non-zero."""

    def __init__(self, message: str, result=None) -> None:
        super().__init__(message)
        self.result = result


class ExternalServiceFailure(HarnessError):
    """Raised when the scanner or the SonarQube server reports a failure."""


class AnalysisFailed(ExternalServiceFailure):
    """Raised when ``end`` (or ``begin``) completes without a usable analysis.

    ``reason`` is one of the keys of :data:`scanner_its.scanner.KNOWN_PHRASES`
    or ``"unknown"``.
    """

    def __init__(self, message: str, result=None, reason: str = "unknown") -> None:
        super().__init__(message)
        self.result = result
        self.reason = reason


class OperationTimeout(HarnessError):
    """Raised when a blocking call exceeds its caller-supplied bound."""


class AssertionFailure(AssertionError):
    """Raised when verified results differ from a scenario's expectations."""
