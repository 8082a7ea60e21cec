"""Error types raised by the query executor."""


class SqlRunnerError(Exception):
    """Base exception for all sqlrunner errors."""
    pass


class InvalidArgument(SqlRunnerError, ValueError):
    """Raised when caller input is malformed or contradictory."""
    pass


class InputNotFound(SqlRunnerError, FileNotFoundError):
    """Raised when the referenced query file does not exist."""
    pass


class InvalidInput(SqlRunnerError, ValueError):
    """Raised when the referenced query file is empty."""
    pass


class QueryExecutionFailed(SqlRunnerError):
    """
    Raised when the driver fails to connect or execute.

    The driver's message is kept unmodified in ``driver_message``.
    """

    def __init__(self, driver_message: str):
        super().__init__(driver_message)
        self.driver_message = driver_message
