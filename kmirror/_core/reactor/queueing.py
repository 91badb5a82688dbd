"""
The per-kind routing of events to the per-object workers.

Every mirrored resource kind has its own backlog of events, filled by
the kind's reflector (:mod:`kmirror._core.reactor.reflecting`).
The router consumes that backlog in the FIFO order and pushes the events
to the per-object streams, which are created and destroyed dynamically.

Every object is identified by its namespace & name (`bodies.ObjectKey`),
and is handled sequentially: i.e. its events are processed in the order
of their arrival. Other objects are handled in parallel in their own workers,
so a slow write of one object never delays the other objects.

To prevent the memory leaks over the long run, the streams and the workers
of each object are destroyed if no new events arrive for some time.
"""
import asyncio
import contextlib
import enum
import logging
from typing import TYPE_CHECKING, MutableMapping, Optional, Tuple, Union

from typing_extensions import Protocol

from kmirror._cogs.aiokits import aiotasks
from kmirror._cogs.configs import configuration
from kmirror._cogs.structs import bodies, references

logger = logging.getLogger(__name__)


class EventProcessor(Protocol):
    async def __call__(
            self,
            *,
            event: bodies.WatchEvent,
    ) -> None:
        ...


# An end-of-stream marker sent from the router to the workers.
class EOS(enum.Enum):
    token = enum.auto()


if TYPE_CHECKING:
    Backlog = asyncio.Queue[bodies.WatchEvent]
    ObjectStream = asyncio.Queue[Union[bodies.WatchEvent, EOS]]
else:
    Backlog = asyncio.Queue
    ObjectStream = asyncio.Queue

ObjectRef = Tuple[references.Resource, bodies.ObjectKey]
Streams = MutableMapping[ObjectRef, ObjectStream]


async def router(
        *,
        backlog: Backlog,
        processor: EventProcessor,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
) -> None:
    """
    Route the kind's events to the per-object workers, spawning them as needed.

    The router is generally a never-ending task (unless cancelled or failed).
    The workers, on the other hand, live only while their objects are active.

    A failure in a worker is a bug (the processor contains all the expected
    errors by itself): the router is stopped and the failure is escalated.
    """

    # In case of a failed worker, stop the router, and escalate to the mirror to stop it.
    router_task = asyncio.current_task()
    worker_error: Optional[BaseException] = None
    def exception_handler(exc: BaseException) -> None:
        nonlocal worker_error, router_task
        if worker_error is None:
            worker_error = exc
            if router_task is not None:  # never happens, but is needed for type-checking.
                router_task.cancel()

    # All per-object workers are handled as fire-and-forget jobs via the scheduler,
    # and communicated via the per-object event queues.
    signaller = asyncio.Condition()
    scheduler = aiotasks.Scheduler(limit=settings.queueing.worker_limit,
                                   exception_handler=exception_handler)
    streams: Streams = {}

    try:
        while True:
            event = await backlog.get()

            # Either use the existing object's stream, or create a new one with a new worker.
            key: ObjectRef = (resource, event.key)
            try:
                await streams[key].put(event)
            except KeyError:
                streams[key] = asyncio.Queue()
                await streams[key].put(event)
                await scheduler.spawn(
                    name=f'worker for {resource!r} {event.key}',
                    coro=worker(
                        signaller=signaller,
                        processor=processor,
                        settings=settings,
                        streams=streams,
                        key=key,
                    ))

    except asyncio.CancelledError:
        if worker_error is None:
            raise
        else:
            raise RuntimeError("Event processing has failed with an unrecoverable error. "
                               "This seems to be a bug. "
                               "The mirror will stop to prevent damage.") from worker_error
    finally:
        # Allow the existing workers to finish gracefully before killing them.
        # Ensure the depletion is done even if the router is double-cancelled (e.g. in tests).
        depletion_task = asyncio.create_task(_wait_for_depletion(
            signaller=signaller,
            scheduler=scheduler,
            streams=streams,
            settings=settings,
        ))
        while not depletion_task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(depletion_task)

        # Terminate all the fire-and-forget per-object jobs if they are still running.
        closing_task = asyncio.create_task(scheduler.close())
        while not closing_task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(closing_task)


async def worker(
        *,
        signaller: asyncio.Condition,
        settings: configuration.OperatorSettings,
        processor: EventProcessor,
        streams: Streams,
        key: ObjectRef,
) -> None:
    """
    A single worker for a single object, each running in its own task.

    The worker is time-limited: it exits as soon as all the object's events
    have been processed and there are no new events for some time of idling.
    The router will spawn a new worker when (and if) new events arrive.
    """
    stream = streams[key]
    try:
        while True:

            # Get an event ASAP (no delay) if possible. But expect the queue can be empty.
            # Save memory by finishing the worker if the stream is empty for some time.
            try:
                event = await asyncio.wait_for(stream.get(), timeout=settings.queueing.idle_timeout)
            except asyncio.TimeoutError:
                # The timeout can happen while the queue is being filled (e.g. under high load).
                # Exit only if it is truly empty. There MUST be NO awaits between "break" and
                # "finally", so that the stream is not populated again after the check.
                if stream.empty():
                    break
                else:
                    continue

            # Exit gracefully and immediately on the end-of-stream marker sent by the router.
            if isinstance(event, EOS):
                break

            await processor(event=event)

    except Exception:
        # Log the error for every worker: there can be several of them failing at the same time,
        # but only one will trigger the router's failure -- others could be lost if not logged.
        logger.exception(f"Event processing has failed with an unrecoverable error for {key[1]}.")
        raise

    finally:
        # Whether an exception or a break or a success, garbage-collect our stream.
        # The stream must not be left in the streams without a worker handling it.
        try:
            del streams[key]
        except KeyError:
            pass  # already absent

        # Notify the depletion routine about the changes in the workers'/streams' overall state.
        async with signaller:
            signaller.notify_all()


async def _wait_for_depletion(
        *,
        signaller: asyncio.Condition,
        scheduler: aiotasks.Scheduler,
        settings: configuration.OperatorSettings,
        streams: Streams,
) -> None:

    # Notify all the workers to finish now. Wake them up if they are waiting in the queue-getting.
    for stream in streams.values():
        await stream.put(EOS.token)

    # Wait for the streams to be depleted, but only if there are some workers running.
    # Continue with the tasks termination if the timeout is reached, no matter the streams.
    async with signaller:
        try:
            await asyncio.wait_for(
                signaller.wait_for(lambda: not streams or scheduler.empty()),
                timeout=settings.queueing.exit_timeout)
        except asyncio.TimeoutError:
            pass  # if not depleted as configured, proceed with what's left and cancel it

    # The last check if the termination is going to be graceful or not.
    if streams:
        logger.warning(f"Unprocessed streams left for {[str(key) for _, key in streams]!r}.")
