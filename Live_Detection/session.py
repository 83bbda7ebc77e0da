from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


class SessionState(str, Enum):
    IDLE = "IDLE"
    PREPROCESSING = "PREPROCESSING"
    INFERRING = "INFERRING"
    POSTPROCESSING = "POSTPROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


_TERMINAL = frozenset({SessionState.COMPLETED, SessionState.FAILED})

_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.PREPROCESSING, SessionState.FAILED}),
    SessionState.PREPROCESSING: frozenset({SessionState.INFERRING, SessionState.FAILED}),
    SessionState.INFERRING: frozenset({SessionState.POSTPROCESSING, SessionState.FAILED}),
    SessionState.POSTPROCESSING: frozenset({SessionState.COMPLETED, SessionState.FAILED}),
}

_FORWARD = (
    SessionState.PREPROCESSING,
    SessionState.INFERRING,
    SessionState.POSTPROCESSING,
    SessionState.COMPLETED,
)


class SessionStateError(RuntimeError):
    pass


class ProcessingSession:
    """
    State of one detection request, from the moment it is accepted until its
    completion callback returns.
    """

    def __init__(self, session_id: int, source_size: Optional[Tuple[int, int]] = None) -> None:
        self.session_id = session_id
        self.source_size = source_size
        self.state = SessionState.IDLE
        self.history: List[SessionState] = [SessionState.IDLE]
        self.failure: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL

    def advance(self, new_state: SessionState) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise SessionStateError(f"Session {self.session_id}: illegal transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def complete(self) -> None:
        """Walk the remaining forward states up to COMPLETED."""
        if self.is_terminal:
            raise SessionStateError(f"Session {self.session_id} already finished as {self.state.value}")
        start = _FORWARD.index(self.state) + 1 if self.state in _FORWARD else 0
        for state in _FORWARD[start:]:
            self.advance(state)

    def fail(self, reason: str) -> None:
        self.advance(SessionState.FAILED)
        self.failure = reason

    def __repr__(self) -> str:
        return f"ProcessingSession(id={self.session_id}, state={self.state.value})"
