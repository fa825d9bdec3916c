"""Exception taxonomy for a discussion run."""


class BattleError(Exception):
    """Base for every error raised by the discussion engine."""


class BackendError(BattleError):
    """Raised when a single backend call fails."""

    def __init__(self, backend_name: str, message: str) -> None:
        self.backend_name = backend_name
        super().__init__(f"[{backend_name}] {message}")


class InvocationExhausted(BackendError):
    """Raised when a backend used up its automatic retries."""

    def __init__(self, backend_name: str, attempts: int, last_error: str) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(backend_name, f"{attempts} attempt(s) failed, last error: {last_error}")


class BackendUnavailable(BattleError):
    """Raised when a backend fails its availability check or cannot be built."""

    def __init__(self, backend_name: str, diagnostic: str) -> None:
        self.backend_name = backend_name
        self.diagnostic = diagnostic
        super().__init__(f"Backend '{backend_name}' unavailable: {diagnostic}")


class RosterInvalid(BattleError):
    """Raised for an unregistered agent name or a roster with fewer than 2 identities."""


class ResumeStateInconsistent(BattleError):
    """Raised when persisted artifacts cannot support a resume."""


class RefereeSilent(BattleError):
    """Raised when the referee produced no text."""


class RunAborted(BattleError):
    """Raised when the operator chooses to abort the run."""


class ProblemFileError(BattleError):
    """Raised when problem.md is missing or has no body text."""
