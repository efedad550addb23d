"""Error taxonomy for pvc-migrator."""


class PvcMigratorError(Exception):
    """Base exception for pvc-migrator operations."""


class ValidationError(PvcMigratorError):
    """A migration request or command argument is missing or invalid."""


class SettingsError(PvcMigratorError):
    """Local settings are missing or unreadable."""


# -----------------------------------------------------------------------------
# Control-plane rejections
# -----------------------------------------------------------------------------
class ControlPlaneError(PvcMigratorError):
    """The cluster rejected or could not serve a request."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class NotFound(ControlPlaneError):
    pass


class Conflict(ControlPlaneError):
    pass


class PermissionDenied(ControlPlaneError):
    pass


class Unavailable(ControlPlaneError):
    pass


# -----------------------------------------------------------------------------
# Run-time conditions raised by the orchestrator's collaborators
# -----------------------------------------------------------------------------
class ConvergenceTimeout(PvcMigratorError):
    """A cluster state was not observed within the configured bound."""

    def __init__(self, description, timeout):
        super().__init__(f"timed out after {timeout}s waiting for {description}")
        self.description = description
        self.timeout = timeout


class PreconditionFailed(PvcMigratorError):
    """The cluster is not in the state a step requires before it runs."""


class SyncFailed(PvcMigratorError):
    """The copy agent in the migrator pod reported a failure."""

    def __init__(self, message, exit_code=None, output=""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class OperatorDeclined(PvcMigratorError):
    """The operator refused a confirmation gate."""
