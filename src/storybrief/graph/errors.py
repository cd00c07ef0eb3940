"""Error types raised while building scene context.

Retrieval failures are fatal to context construction: they propagate to the
caller, which decides whether to abort generation or fall back to a reduced
prompt. Missing optional data and unresolvable relationship endpoints are
not errors and never surface here.
"""

from __future__ import annotations

from dataclasses import dataclass


class ContextError(Exception):
    """Base class for context construction failures."""


@dataclass
class RetrievalError(ContextError):
    """Raised when the subgraph query or an ancillary read fails.

    Attributes:
        operation: Name of the read that failed (e.g., ``query_connected_subgraph``).
        reason: Description of the underlying failure.
    """

    operation: str
    reason: str = ""

    def __post_init__(self) -> None:
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"Context retrieval failed during '{self.operation}'"
        if self.reason:
            msg += f": {self.reason}"
        return msg


@dataclass
class RetrievalTimeoutError(RetrievalError):
    """Raised when retrieval does not complete within the configured timeout.

    Attributes:
        timeout: Seconds allowed before giving up.
    """

    timeout: float = 0.0

    def _format_message(self) -> str:
        return f"Context retrieval timed out after {self.timeout:g}s during '{self.operation}'"


@dataclass
class SceneNotFoundError(ContextError):
    """Raised when the scene to brief cannot be located.

    Attributes:
        scene_id: The scene that was requested.
        context: Where the lookup happened.
    """

    scene_id: str
    context: str = ""

    def __post_init__(self) -> None:
        msg = f"Scene '{self.scene_id}' not found"
        if self.context:
            msg += f" ({self.context})"
        super().__init__(msg)
