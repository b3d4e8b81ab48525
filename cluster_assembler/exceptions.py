"""Custom exceptions for cluster assembly."""


class ClusterAssemblerError(Exception):
    """Base exception for all cluster assembly errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ExecutionError(ClusterAssemblerError):
    """Exception raised when a command fails on a host."""

    def __init__(
        self,
        message: str,
        details: str = None,
        command: str | None = None,
        exit_status: int | None = None,
        output: str = "",
    ):
        self.command = command
        self.exit_status = exit_status
        self.output = output
        super().__init__(message, details)


class ParseError(ClusterAssemblerError):
    """Exception raised when expected data is missing from command output."""

    pass


class RetryExhaustedError(ClusterAssemblerError):
    """Exception raised when every attempt of a compensated step failed."""

    pass


class ConfigurationError(ClusterAssemblerError):
    """Exception raised for configuration errors."""

    pass


class AssemblyError(ClusterAssemblerError):
    """Exception raised when an assembly step fails."""

    pass


class AssemblyStateError(ClusterAssemblerError):
    """Exception raised for out-of-order access to shared cluster state."""

    pass
