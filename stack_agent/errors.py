class StackAgentError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AppNotFound(StackAgentError):
    status_code = 404

    def __init__(self, app_id: str):
        super().__init__("There is no app with that id")
        self.app_id = app_id


class BuildNotFound(StackAgentError):
    status_code = 404


class AppConflict(StackAgentError):
    status_code = 400


class StackStartFailed(StackAgentError):
    status_code = 500

    def __init__(self, err: str):
        super().__init__(f"Error when running project: {err}")
        self.err = err


class BuilderUnavailable(StackAgentError):
    status_code = 503


class RuntimeUnavailable(StackAgentError):
    """The container runtime failed or could not be reached."""

    status_code = 503

    def __init__(self, message: str, err: str = ""):
        super().__init__(message)
        self.err = err or message
