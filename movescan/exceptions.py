"""Exception hierarchy for movescan."""


class MoveScanError(Exception):
    """Base exception for all movescan errors."""

    def __init__(self, message: str, details: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ExtractionError(MoveScanError):
    """Raised when source text has unbalanced or unterminated structure."""

    def __init__(self, file_name: str, reason: str, line: int | None = None):
        details = {"file": file_name}
        if line is not None:
            details["line"] = str(line)
        super().__init__(reason, details)
        self.file_name = file_name
        self.reason = reason
        self.line = line


class ConfigError(MoveScanError):
    """Raised for invalid configuration values or unreadable config files."""


class InferenceError(MoveScanError):
    """Raised when the contextual inference capability fails."""
