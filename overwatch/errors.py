"""Exception hierarchy for overwatch.

Configuration errors are fatal at startup. Everything else is raised while a
single event's chain runs and is contained to that run by the pipeline runner.
"""


class OverwatchError(Exception):
    """Base exception for overwatch failures."""


class ConfigurationError(OverwatchError):
    """Invalid or incomplete configuration; the pipeline never starts."""


class UnknownReactorKind(ConfigurationError):
    """A requested reactor kind has no generator."""

    def __init__(self, kind: str):
        super().__init__(f"Unknown reactor kind: {kind}")
        self.kind = kind


class UnsupportedArchiveType(OverwatchError):
    """extractFileTo was handed a file it cannot unpack."""

    def __init__(self, filename: str):
        super().__init__(
            f"extractFileTo only supports tgz, gz or zip files, got: {filename}"
        )
        self.filename = filename


class ExecutionFailure(OverwatchError):
    """A shell command exited non-zero or its worker was unavailable."""

    def __init__(self, command: str, message: str, exit_code: int = None, output: str = ""):
        super().__init__(f"{message}: {command}")
        self.command = command
        self.exit_code = exit_code
        self.output = output


class SqlFailure(OverwatchError):
    """The database driver rejected a statement."""

    def __init__(self, statement: str, error: Exception):
        super().__init__(f"SQL failed ({error}): {statement}")
        self.statement = statement
        self.error = error
