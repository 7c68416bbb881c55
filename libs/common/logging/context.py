"""Run ID context propagation for research log correlation.

A run ID groups every log line emitted while one research job (a factor
synthesis, an IC sweep, a batch of clones) is executing, so that the
pipeline start/finish and statistics lines can be joined afterwards.

Example:
    >>> from libs.common.logging.context import generate_run_id, set_run_id, get_run_id
    >>> run_id = generate_run_id()
    >>> set_run_id(run_id)
    >>> get_run_id() == run_id
    True
"""

import contextvars
import uuid
from types import TracebackType

# Context variable so concurrent threads/tasks keep their own run ID
_run_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("run_id", default=None)


def generate_run_id() -> str:
    """Generate a new unique run ID (UUID v4 string)."""
    return str(uuid.uuid4())


def get_run_id() -> str | None:
    """Get the run ID of the current context, or None if unset."""
    return _run_id_var.get()


def set_run_id(run_id: str) -> None:
    """Set the run ID for the current context.

    Args:
        run_id: The run ID to set

    Raises:
        ValueError: If run_id is empty
    """
    if not run_id:
        raise ValueError("Run ID cannot be empty")
    _run_id_var.set(run_id)


def clear_run_id() -> None:
    """Clear the run ID from the current context."""
    _run_id_var.set(None)


class RunContext:
    """Context manager that scopes a run ID to a block.

    Restores the previous run ID on exit, so nested runs are safe.

    Example:
        >>> with RunContext("sweep-42"):
        ...     engine.get_icir(20)  # logs carry run_id="sweep-42"
        >>> get_run_id() is None
        True
    """

    def __init__(self, run_id: str | None = None) -> None:
        self.run_id = run_id or generate_run_id()
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> str:
        self._token = _run_id_var.set(self.run_id)
        return self.run_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _run_id_var.reset(self._token)
            self._token = None
