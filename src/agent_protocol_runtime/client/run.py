"""Client runtime: drives one agent run.

Pipeline for every frame, strictly in arrival order:

    transport -> decode -> chunk expansion -> run state machine
              -> state synchronization -> consumer

Guarantees:
- Exactly one terminal event (RUN_FINISHED or RUN_ERROR) is delivered,
  and it is the last one. Transport failures, decode failures, protocol
  violations and early stream ends are turned into a synthesized RUN_ERROR.
- At most one event is in flight: the next frame is only read after the
  consumer has finished with the previous event.
- Cancellation stops reads, closes the transport, discards undelivered
  frames and delivers nothing further. It is acknowledged with a
  CancellationAck, never reported as an error.

Two consumption styles:

    # Async iteration
    async for event in run_agent(input, config):
        ...

    # Subscriber callbacks
    await run_agent(input, config).subscribe(subscriber)
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, TypeVar

from ..agent import Agent
from ..chunks import ChunkExpander
from ..config import TransportConfig
from ..errors import (
    AgentProtocolError,
    AgentRunError,
    IncompleteRunError,
    StateSyncError,
)
from ..events import BaseEvent, RunErrorEvent, RunFinishedEvent, now_ms
from ..state import StateSyncEngine
from ..types import Message, RunAgentInput
from ..verify import RunPhase, RunValidator
from .transport import BaseAgentTransport, create_transport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunStatus(str, Enum):
    """Lifecycle of an AgentRun."""

    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CancellationAck:
    """Acknowledgment returned by AgentRun.cancel().

    Attributes:
        thread_id: Thread of the cancelled run
        run_id: The cancelled run
        events_delivered: Events handed to the consumer before cancellation
        discarded_events: Events decoded but never delivered
        effective: False if the run had already ended when cancel() was called
    """

    thread_id: str
    run_id: str
    events_delivered: int
    discarded_events: int = 0
    effective: bool = True


class RunSubscriber(Protocol):
    """Consumer callbacks. Each may be sync or async.

    ``on_error`` and ``on_complete`` are mutually exclusive, each is called
    at most once, and no ``on_next`` follows either. Optional extras:
    ``on_sync_error(error)`` and ``on_cancelled(ack)``.
    """

    def on_next(self, event: BaseEvent) -> Awaitable[None] | None: ...

    def on_error(self, error: AgentRunError) -> Awaitable[None] | None: ...

    def on_complete(self) -> Awaitable[None] | None: ...


@dataclass
class CallbackSubscriber:
    """Subscriber assembled from plain callables."""

    on_next: Callable[[BaseEvent], Any] | None = None
    on_error: Callable[[AgentRunError], Any] | None = None
    on_complete: Callable[[], Any] | None = None
    on_sync_error: Callable[[StateSyncError], Any] | None = None
    on_cancelled: Callable[[CancellationAck], Any] | None = None


async def _notify(subscriber: Any, callback: str, *args: Any) -> None:
    fn = getattr(subscriber, callback, None)
    if fn is None:
        return
    result = fn(*args)
    if inspect.isawaitable(result):
        await result


class _Cancelled(Exception):
    """Internal signal: the run was cancelled while waiting."""


class AgentRun:
    """One run of an agent, consumed exactly once.

    Owns its transport, run state machine and state synchronization engine.
    Nothing is shared between runs; start a new AgentRun to run again.
    """

    def __init__(
        self,
        input: RunAgentInput,
        transport: BaseAgentTransport,
        config: TransportConfig | None = None,
    ) -> None:
        self.input = input
        self.config = config or transport.config
        self._transport = transport
        self._validator = RunValidator(thread_id=input.thread_id, run_id=input.run_id)
        self._expander = ChunkExpander()
        self._sync = StateSyncEngine()

        self._status = RunStatus.PENDING
        self._cancel_event = asyncio.Event()
        self._ack: CancellationAck | None = None
        self._iterator: AsyncIterator[BaseEvent] | None = None
        self._pending_task: asyncio.Task[Any] | None = None
        self._released = False

        self._delivered = 0
        self._discarded = 0
        self._unreported_sync_error: StateSyncError | None = None

        self.error: AgentRunError | None = None
        self.result: Any = None
        self.sync_errors: list[StateSyncError] = []

    # =========================================================================
    # Public state
    # =========================================================================

    @property
    def thread_id(self) -> str:
        return self.input.thread_id

    @property
    def run_id(self) -> str:
        return self.input.run_id

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def phase(self) -> RunPhase:
        """Current state of the run state machine."""
        return self._validator.phase

    @property
    def state(self) -> Any:
        """Last committed application state."""
        return self._sync.state

    @property
    def messages(self) -> tuple[Message, ...]:
        """Last committed message log."""
        return self._sync.messages

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def done(self) -> bool:
        return self._status in (RunStatus.FINISHED, RunStatus.ERRORED, RunStatus.CANCELLED)

    # =========================================================================
    # Consumption
    # =========================================================================

    def __aiter__(self) -> AsyncIterator[BaseEvent]:
        if self._iterator is not None:
            raise RuntimeError("AgentRun can only be consumed once; start a new run")
        self._iterator = self._deliver()
        return self._iterator

    async def subscribe(self, subscriber: RunSubscriber | CallbackSubscriber) -> RunStatus:
        """Drive the run, delivering events to ``subscriber``.

        Each callback is awaited before the next frame is read.

        Returns:
            The final run status
        """
        try:
            async for event in self:
                if self._unreported_sync_error is not None:
                    error, self._unreported_sync_error = self._unreported_sync_error, None
                    await _notify(subscriber, "on_sync_error", error)
                await _notify(subscriber, "on_next", event)
        except BaseException:
            await self.aclose()
            raise

        if self._status == RunStatus.CANCELLED:
            if self._ack is not None:
                await _notify(subscriber, "on_cancelled", self._ack)
        elif self.error is not None:
            await _notify(subscriber, "on_error", self.error)
        else:
            await _notify(subscriber, "on_complete")
        return self._status

    async def collect(self) -> list[BaseEvent]:
        """Consume the whole run and return the delivered events."""
        return [event async for event in self]

    async def cancel(self) -> CancellationAck:
        """Cancel the run.

        Stops further reads, closes the transport and discards anything
        decoded but not yet delivered. Idempotent.
        """
        if self._ack is not None:
            return self._ack

        if self.done:
            self._ack = CancellationAck(
                thread_id=self.thread_id,
                run_id=self.run_id,
                events_delivered=self._delivered,
                effective=False,
            )
            return self._ack

        self._cancel_event.set()
        self._status = RunStatus.CANCELLED

        task = self._pending_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

        await self._release()
        self._ack = CancellationAck(
            thread_id=self.thread_id,
            run_id=self.run_id,
            events_delivered=self._delivered,
            discarded_events=self._discarded,
        )
        logger.info(
            f"Run {self.run_id} cancelled after {self._delivered} events "
            f"({self._discarded} discarded)"
        )
        return self._ack

    async def aclose(self) -> None:
        """Stop consuming. Cancels the run if it has not ended."""
        if not self.done:
            await self.cancel()
        iterator = self._iterator
        if iterator is not None and not getattr(iterator, "ag_running", False):
            await iterator.aclose()  # type: ignore[attr-defined]
        await self._release()

    async def __aenter__(self) -> AgentRun:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _deliver(self) -> AsyncIterator[BaseEvent]:
        """Outer generator: enforces cancellation and resource release."""
        if self._status == RunStatus.PENDING:
            self._status = RunStatus.RUNNING
            logger.info(f"Run {self.run_id} started (thread {self.thread_id})")
        pipeline = self._pipeline()
        try:
            async for event in pipeline:
                if self.cancelled:
                    self._discarded += 1
                    return
                self._delivered += 1
                yield event
                if self.cancelled:
                    return
        finally:
            await pipeline.aclose()
            await self._release()

    async def _pipeline(self) -> AsyncGenerator[BaseEvent, None]:
        try:
            await self._race(self._transport.open(self.input), timeout=None)
        except _Cancelled:
            return
        except AgentProtocolError as e:
            yield self._fail(e)
            return

        frames = self._transport.events()
        try:
            while True:
                try:
                    received = await self._race(anext(frames), timeout=self.config.read_timeout)
                except _Cancelled:
                    return
                except StopAsyncIteration:
                    yield self._fail(
                        IncompleteRunError(
                            "Transport closed before RUN_FINISHED or RUN_ERROR "
                            f"(state: {self._validator.phase.describe()})"
                        )
                    )
                    return
                except TimeoutError:
                    yield self._fail(
                        IncompleteRunError(
                            f"No frame received within {self.config.read_timeout}s "
                            f"(state: {self._validator.phase.describe()})"
                        )
                    )
                    return
                except AgentProtocolError as e:
                    yield self._fail(e)
                    return

                try:
                    expanded = self._expander.expand(received)
                except AgentProtocolError as e:
                    yield self._fail(e)
                    return

                for event in expanded:
                    try:
                        self._validator.validate(event)
                    except AgentProtocolError as e:
                        yield self._fail(e)
                        return

                    try:
                        self._sync.apply(event)
                    except StateSyncError as e:
                        if self.config.sync_error_policy == "escalate":
                            yield self._fail(e)
                            return
                        self.sync_errors.append(e)
                        self._unreported_sync_error = e
                        logger.warning(f"Run {self.run_id}: state delta rejected: {e}")

                    logger.debug(f"Run {self.run_id}: delivering {event.type.value}")
                    # Record the outcome before delivery: the consumer may stop at it
                    if event.is_terminal():
                        self._on_terminal(event)
                        yield event
                        return
                    yield event
        finally:
            with contextlib.suppress(Exception):
                await frames.aclose()

    async def _race(self, awaitable: Awaitable[T], timeout: float | None) -> T:
        """Await ``awaitable`` unless the run is cancelled or the timeout expires.

        Raises:
            _Cancelled: If cancel() was called first
            TimeoutError: If ``timeout`` elapsed first
        """
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise _Cancelled()

        task = asyncio.ensure_future(awaitable)
        self._pending_task = task
        cancel_wait = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_wait.cancel()
            self._pending_task = None

        if self.cancelled:
            if task.done() and not task.cancelled() and task.exception() is None:
                self._discarded += 1
            else:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
            raise _Cancelled()

        if task not in done:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
            raise TimeoutError()

        return task.result()

    def _fail(self, error: AgentProtocolError) -> RunErrorEvent:
        """Turn a local failure into the run's single synthesized RUN_ERROR."""
        logger.error(f"Run {self.run_id} failed [{error.code}]: {error}")
        self.error = AgentRunError(str(error), code=error.code, cause=error)
        self._status = RunStatus.ERRORED
        self._validator.close()
        return RunErrorEvent(message=str(error), code=error.code, timestamp=now_ms())

    def _on_terminal(self, event: BaseEvent) -> None:
        if isinstance(event, RunFinishedEvent):
            self.result = event.result
            self._status = RunStatus.FINISHED
            logger.info(f"Run {self.run_id} finished after {self._delivered + 1} events")
        elif isinstance(event, RunErrorEvent):
            self.error = AgentRunError(event.message, code=event.code)
            self._status = RunStatus.ERRORED
            logger.info(f"Run {self.run_id} ended with RUN_ERROR: {event.message}")

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        self._validator.close()
        await self._transport.close()
        logger.debug(f"Run {self.run_id} resources released")


def run_agent(
    input: RunAgentInput | dict[str, Any],
    config: TransportConfig | None = None,
    *,
    agent: Agent | None = None,
    transport: BaseAgentTransport | None = None,
) -> AgentRun:
    """Start a run.

    Args:
        input: Run input (thread/run ids, tools, context, ...)
        config: Transport configuration; defaults to local mode when an
            agent is given and HTTP otherwise
        agent: In-process agent, for local mode
        transport: Explicit transport, overriding ``config.mode``

    Returns:
        An AgentRun to iterate or subscribe to
    """
    if not isinstance(input, RunAgentInput):
        input = RunAgentInput.model_validate(input)

    if config is None:
        config = transport.config if transport is not None else TransportConfig(
            mode="local" if agent is not None else "http"
        )
    if transport is None:
        transport = create_transport(config, agent=agent)
    return AgentRun(input, transport, config)
