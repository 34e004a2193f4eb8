"""Error taxonomy shared by the stores, engines and workspaces."""


class WorkspaceError(Exception):
    """Base class for recoverable workspace errors."""

    pass


class ConfigurationError(WorkspaceError):
    """No usable credential: missing, blank, or rejected by the remote side."""

    pass


class RemoteCallError(WorkspaceError):
    """Network failure, malformed response, or remote-side error."""

    pass


class ParseError(WorkspaceError):
    """Stored session data could not be decoded."""

    pass


class ValidationError(WorkspaceError):
    """User input cannot be acted on yet (e.g. plugin has no name)."""

    pass
