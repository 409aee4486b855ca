"""
krbgss State Machine Base

Table-driven state machine used by both handshake roles.

Each transition is looked up by (current state, event type), computes the
next handshake record with a pure updater, checks the registered
invariants against the would-be state and only then commits. A failed
lookup or update leaves the machine exactly where it was, so partial
handshake progress is never visible.

Every committed transition is kept for the JSON trace. Trace values are
redacted: keys and other nested records appear only by type name.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    Tuple,
    TypeVar,
)

import attrs
import structlog
from returns.result import Failure, Result, Success

from krbgss.core.exceptions import InvariantViolation, KrbGSSError

logger = structlog.get_logger()


S = TypeVar("S", bound=Enum)  # State type
E = TypeVar("E")  # Event type
C = TypeVar("C")  # Handshake record type

InvariantFn = Callable[[S, Any], bool]

# (next_state, updater(event, record) -> record)
TransitionEntry = Tuple[S, Callable[[Any, Any], Any]]


def redact(value: Any) -> Any:
    """Render one attribute value for the trace without leaking secrets."""
    if isinstance(value, bytes):
        return f"<bytes:{len(value)}>"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, frozenset):
        return sorted(redact(item) for item in value)
    if attrs.has(type(value)):
        return f"<{type(value).__name__}>"
    return value


def snapshot(obj: Any) -> Dict[str, Any]:
    """Public attributes of an attrs instance, redacted."""
    if not attrs.has(type(obj)):
        return {}
    return {
        a.name: redact(getattr(obj, a.name))
        for a in attrs.fields(type(obj))
        if not a.name.startswith("_")
    }


@attrs.define(frozen=True, slots=True)
class Transition(Generic[S, E]):
    """One committed step of a handshake."""

    from_state: S
    event_type: str
    to_state: S
    timestamp: datetime
    event: Dict[str, Any] = attrs.Factory(dict)
    record: Dict[str, Any] = attrs.Factory(dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.name,
            "event_type": self.event_type,
            "to_state": self.to_state.name,
            "timestamp": self.timestamp.isoformat(),
            "event": self.event,
            "record": self.record,
        }


@attrs.define
class StateMachineBase(ABC, Generic[S, E, C]):
    """
    Base state machine for the handshake roles.

    Subclasses name the initial state and the transition table; the
    handshake record (C) is an immutable attrs class updated with
    attrs.evolve.

    Usage:
        class DoorMachine(StateMachineBase[Door, Any, DoorRecord]):
            def initial_state(self) -> Door:
                return Door.CLOSED

            def transition_table(self):
                return {
                    (Door.CLOSED, Opened): (Door.OPEN, self._handle_opened),
                }

            @staticmethod
            def _handle_opened(event: Opened, record: DoorRecord) -> DoorRecord:
                return attrs.evolve(record, opened_by=event.who)
    """

    _state: S = attrs.field(alias="_state")
    _context: C = attrs.field(alias="_context")
    _history: List[Transition[S, E]] = attrs.field(factory=list, alias="_history")
    _invariants: List[Tuple[str, InvariantFn]] = attrs.field(factory=list, alias="_invariants")
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), alias="_logger")

    @abstractmethod
    def initial_state(self) -> S:
        ...

    @abstractmethod
    def transition_table(self) -> Dict[Tuple[S, type], TransitionEntry]:
        """Map (state, event type) to (next state, record updater)."""
        ...

    @property
    def state(self) -> S:
        return self._state

    @property
    def context(self) -> C:
        """The committed handshake record."""
        return self._context

    @property
    def history(self) -> List[Transition[S, E]]:
        return list(self._history)

    def add_invariant(self, name: str, invariant: InvariantFn) -> None:
        """Register a (state, record) -> bool check run before every commit."""
        self._invariants.append((name, invariant))

    def process_event(self, event: E) -> Result[S, str]:
        """
        Apply event to the current state.

        Returns:
            Success(new_state), or Failure(reason) when the event is not
            valid here or the record update failed. State is unchanged on
            Failure.

        Raises:
            InvariantViolation: the resulting state would break an invariant
        """
        entry = self.transition_table().get((self._state, type(event)))
        if entry is None:
            self._logger.warning(
                "invalid_transition",
                current_state=self._state.name,
                event_type=type(event).__name__,
            )
            return Failure(
                f"No transition for state {self._state.name} with event {type(event).__name__}"
            )

        next_state, updater = entry
        try:
            record = updater(event, self._context)
        except (KrbGSSError, ValueError, TypeError) as e:
            self._logger.error(
                "context_update_failed",
                error=str(e),
                current_state=self._state.name,
                event_type=type(event).__name__,
            )
            return Failure(f"Context update failed: {e}")

        self._check_invariants(next_state, record)
        self._commit(event, next_state, record)
        return Success(next_state)

    def _check_invariants(self, next_state: S, record: C) -> None:
        for name, invariant in self._invariants:
            if not invariant(next_state, record):
                self._logger.error(
                    "invariant_violated",
                    invariant=name,
                    from_state=self._state.name,
                    to_state=next_state.name,
                )
                raise InvariantViolation(f"Invariant '{name}' violated")

    def _commit(self, event: E, next_state: S, record: C) -> None:
        self._history.append(
            Transition(
                from_state=self._state,
                event_type=type(event).__name__,
                to_state=next_state,
                timestamp=datetime.now(timezone.utc),
                event=snapshot(event),
                record=snapshot(record),
            )
        )
        self._logger.debug(
            "state_transition",
            from_state=self._state.name,
            to_state=next_state.name,
            event_type=type(event).__name__,
        )
        self._state = next_state
        self._context = record

    def export_trace_json(self) -> str:
        """Export the states visited and every transition as JSON."""
        states = [t.from_state.name for t in self._history]
        states.append(self._state.name)

        return json.dumps(
            {
                "initial_state": self.initial_state().name,
                "final_state": self._state.name,
                "states": states,
                "transitions": [t.to_dict() for t in self._history],
            },
            indent=2,
        )
