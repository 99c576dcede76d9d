"""State synchronization engine.

Holds the authoritative application state and message log for one run.
All mutation goes through snapshot or delta application:

- STATE_SNAPSHOT replaces the state wholesale
- STATE_DELTA applies RFC 6902 patch operations as one atomic unit
- MESSAGES_SNAPSHOT replaces the message log wholesale

A delta is applied to a private copy and committed only if every operation
succeeds. On failure the committed state is untouched and StateSyncError is
raised. Readers only ever see committed values.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Sequence
from typing import Any

import jsonpatch
import jsonpointer
from pydantic import TypeAdapter, ValidationError

from .errors import StateSyncError
from .events import (
    BaseEvent,
    MessagesSnapshotEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
)
from .types import Message

logger = logging.getLogger(__name__)

_messages_adapter: TypeAdapter[list[Message]] = TypeAdapter(list[Message])


def _copy_messages(messages: Sequence[Message]) -> tuple[Message, ...]:
    return tuple(message.model_copy(deep=True) for message in messages)


class StateSyncEngine:
    """Authoritative state and message log for a single run.

    Usage:
        engine = StateSyncEngine()
        engine.apply(StateSnapshotEvent(snapshot={"count": 0}))
        engine.apply(StateDeltaEvent(delta=[{"op": "replace", "path": "/count", "value": 1}]))
        assert engine.state == {"count": 1}
    """

    def __init__(self, state: Any = None, messages: Sequence[Message] | None = None) -> None:
        self._state: Any = copy.deepcopy(state)
        self._messages: tuple[Message, ...] = _copy_messages(messages or ())
        self._version = 0

    @property
    def state(self) -> Any:
        """A copy of the last committed state (``None`` before any snapshot)."""
        return copy.deepcopy(self._state)

    @property
    def messages(self) -> tuple[Message, ...]:
        """A copy of the last committed message log."""
        return _copy_messages(self._messages)

    @property
    def version(self) -> int:
        """Number of commits so far."""
        return self._version

    def apply(self, event: BaseEvent) -> bool:
        """Apply a state event; other events are ignored.

        Returns:
            True if the event was a state event and was committed

        Raises:
            StateSyncError: If a delta could not be applied
        """
        if isinstance(event, StateSnapshotEvent):
            self.apply_snapshot(event.snapshot)
        elif isinstance(event, StateDeltaEvent):
            self.apply_delta(event.delta)
        elif isinstance(event, MessagesSnapshotEvent):
            self.apply_messages_snapshot(event.messages)
        else:
            return False
        return True

    def apply_snapshot(self, snapshot: Any) -> None:
        """Replace the state with ``snapshot``."""
        self._commit_state(copy.deepcopy(snapshot))
        logger.debug(f"State snapshot applied (version {self._version})")

    def apply_delta(self, operations: list[dict[str, Any]]) -> Any:
        """Apply ordered patch operations atomically.

        Returns:
            The newly committed state

        Raises:
            StateSyncError: If any operation is malformed or inapplicable.
                The committed state is left unchanged.
        """
        candidate = copy.deepcopy(self._state)
        for index, operation in enumerate(operations):
            try:
                patch = jsonpatch.JsonPatch([operation])
                candidate = patch.apply(candidate, in_place=True)
            except (
                jsonpatch.JsonPatchException,
                jsonpointer.JsonPointerException,
                KeyError,
                IndexError,
                TypeError,
            ) as e:
                logger.warning(f"Rejected state delta at operation {index} ({operation!r}): {e}")
                label = (
                    f"{operation.get('op', '?')} {operation.get('path', '?')}"
                    if isinstance(operation, dict)
                    else repr(operation)
                )
                raise StateSyncError(
                    f"Patch operation {index} ({label}) failed: {e}",
                    delta=operations,
                    index=index,
                ) from e

        self._commit_state(candidate)
        logger.debug(f"State delta of {len(operations)} operation(s) applied (version {self._version})")
        return self.state

    def apply_messages_snapshot(self, messages: Sequence[Message] | Sequence[dict[str, Any]]) -> None:
        """Replace the message log.

        Raises:
            StateSyncError: If a message dict does not validate
        """
        try:
            validated = _messages_adapter.validate_python(list(messages))
        except ValidationError as e:
            raise StateSyncError(f"Invalid messages snapshot: {e}") from e
        # Instances are not revalidated, so they would still be shared with the event
        self._messages = _copy_messages(validated)
        self._version += 1
        logger.debug(f"Messages snapshot applied ({len(validated)} messages)")

    def _commit_state(self, value: Any) -> None:
        self._state = value
        self._version += 1
