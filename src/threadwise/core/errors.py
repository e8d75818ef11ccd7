"""Exception hierarchy shared by the loop, the oracle adapters and the tools."""


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


class UnknownIntentError(ToolExecutionError):
    """Raised when no handler is registered for an intent."""

    def __init__(self, intent: str) -> None:
        super().__init__(f"No handler found for intent: {intent}")
        self.intent = intent


class ToolTimeoutError(ToolExecutionError):
    """Raised when an executor does not finish before its deadline."""


class ResultNotFoundError(ToolExecutionError):
    """Raised by tools when a cached result id is unknown or expired."""

    def __init__(self, result_id: str) -> None:
        super().__init__(f"No cached results found for ID: {result_id}")
        self.result_id = result_id


class OracleError(RuntimeError):
    """Raised when the decision oracle is unreachable or returns unusable output."""


class IterationLimitError(RuntimeError):
    """Raised when a loop pass exceeds the configured number of oracle decisions."""
