class RetryableTaskError(Exception):
    """Task failed but should be retried (transient failure)."""

class TerminalTaskError(Exception):
    """Task failed and should not be retried (bad input, invariant broken)."""

class ConfigurationError(TerminalTaskError):
    """Job definition is missing, unparseable or malformed."""

class PayloadError(TerminalTaskError):
    """Inbound queue message is not a valid job descriptor."""

class StepExecutionError(TerminalTaskError):
    """A step exited with a non-zero status."""

    def __init__(self, index: int, command: str, exit_code: int):
        super().__init__(f"Step {index} failed with exit code {exit_code}: {command}")
        self.index = index
        self.command = command
        self.exit_code = exit_code

class CancellationError(RetryableTaskError):
    """Job exceeded its deadline (or the worker was asked to stop)."""

class TransportError(RuntimeError):
    """Queue / connection failure. Fatal to the worker process."""
