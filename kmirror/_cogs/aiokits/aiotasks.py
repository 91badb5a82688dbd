"""
Task orchestration for the mirror: guarded long-living tasks & job scheduling.

Only tasks are supported here, not arbitrary awaitables: the tasks are
both awaited and cancelled, so they must be real :class:`asyncio.Task`.
"""
import asyncio
from typing import TYPE_CHECKING, Any, Callable, Collection, Coroutine, Optional, Set, Tuple

from kmirror._cogs.helpers import typedefs

# Subscripted futures & tasks exist only for type-checkers, not at runtime.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task

ExceptionHandler = Callable[[BaseException], None]


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: Optional[typedefs.Logger] = None,
) -> None:
    """
    Run a task that is expected to run forever, and report when it does not.

    The mirrors, the reflectors' resyncs, and the signal & flag watchers
    never exit on their own. If they do, it is logged as a warning (unless
    they are marked as finishable). A failure is logged and re-raised as is.
    A cancellation is logged (unless expected, i.e. cancellable) and re-raised.
    """
    title = name.capitalize()
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None and not cancellable:
            logger.debug(f"{title} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{title} has failed: {e}")
        raise
    if logger is not None and not finishable:
        logger.warning(f"{title} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: Optional[typedefs.Logger] = None,
) -> Task:
    """ Start a :func:`guard`-ed coroutine as a named task. """
    guarded = guard(coro, name, finishable=finishable, cancellable=cancellable, logger=logger)
    return asyncio.create_task(guarded, name=name)


async def wait(
        tasks: Collection[Task],
        *,
        timeout: Optional[float] = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> Tuple[Set[Task], Set[Task]]:
    """ Same as :func:`asyncio.wait`, but tolerates an empty collection of tasks. """
    if not tasks:
        return set(), set()
    return await asyncio.wait(tasks, timeout=timeout, return_when=return_when)


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        quiet: bool = False,
        cancelled: bool = False,
        interval: Optional[float] = None,
        logger: Optional[typedefs.Logger] = None,
) -> Tuple[Set[Task], Set[Task]]:
    """
    Cancel the tasks and wait until they are all done.

    With the interval, the still-running tasks are reported every so often
    until they exit. In the quiet mode, the quick (single-round) stopping
    is not reported at all, only the slow one.

    ``cancelled`` only changes the wording: it says that the stopping happens
    because of the cancellation of the caller rather than a normal exit.
    If the stopping itself is cancelled, the remaining tasks are abandoned.
    """
    if not tasks:
        if logger is not None and not quiet:
            logger.debug(f"{title.capitalize()} tasks stopping is skipped: no tasks given.")
        return set(), set()

    for task in tasks:
        task.cancel()

    def report(reason: str, pending: Set[Task], rounds: int) -> None:
        if logger is not None and (not quiet or pending or rounds > 1):
            state = 'are not' if pending else 'are'
            logger.debug(f"{title.capitalize()} tasks {state} stopped: {reason}; "
                         f"tasks left: {pending!r}")

    rounds = 0
    done: Set[Task] = set()
    pending: Set[Task] = set(tasks)
    while pending:
        rounds += 1
        try:
            done_now, pending = await wait(pending, timeout=interval)
        except asyncio.CancelledError:
            pending = {task for task in tasks if not task.done()}
            report('double-cancelling at stopping' if cancelled else 'cancelling at stopping',
                   pending, rounds)
            raise
        done |= done_now
        report('cancelling normally' if cancelled else 'finishing normally', pending, rounds)
    return done, pending


async def reraise(tasks: Collection[Task]) -> None:
    """ Raise the first error of the finished tasks; ignore the cancelled ones. """
    for task in tasks:
        if not task.cancelled():
            task.result()


async def all_tasks(*, ignored: Collection[Task] = frozenset()) -> Collection[Task]:
    """ All tasks of the running loop except the current one and the ignored ones. """
    current = asyncio.current_task()
    return {task for task in asyncio.all_tasks() if task is not current and task not in ignored}


class Scheduler:
    """
    A runner of fire-and-forget jobs, optionally limited in concurrency.

    The router spawns the per-object workers here and forgets about them.
    The jobs above the limit are started but wait for a free slot before
    running their coroutines. The jobs' failures are not raised anywhere:
    they are passed to the exception handler instead.
    """

    def __init__(
            self,
            *,
            limit: Optional[int] = None,
            exception_handler: Optional[ExceptionHandler] = None,
    ) -> None:
        super().__init__()
        self._closed = False
        self._slots = asyncio.Semaphore(limit) if limit is not None else None
        self._exception_handler = exception_handler
        self._tasks: Set[Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    def empty(self) -> bool:
        return not self._tasks

    async def wait(self) -> None:
        """ Wait until all the jobs are done. """
        await self._idle.wait()

    async def close(self) -> None:
        """ Reject new jobs, cancel the existing ones, and wait until they exit. """
        self._closed = True
        for task in self._tasks:
            task.cancel()
        await self.wait()

    async def spawn(
            self,
            coro: Coroutine[Any, Any, Any],
            *,
            name: Optional[str] = None,
    ) -> None:
        if self._closed:
            coro.close()
            raise RuntimeError("Cannot spawn new jobs in a closed scheduler.")
        task = asyncio.create_task(self._run(coro), name=name)
        task.add_done_callback(self._done)
        self._tasks.add(task)
        self._idle.clear()

    async def _run(self, coro: Coroutine[Any, Any, Any]) -> None:
        if self._slots is None:
            await coro
            return

        # A job cancelled while waiting for a slot never starts its coroutine.
        try:
            await self._slots.acquire()
        except asyncio.CancelledError:
            coro.close()
            raise
        try:
            await coro
        finally:
            self._slots.release()

    def _done(self, task: Task) -> None:
        self._tasks.discard(task)
        if not self._tasks:
            self._idle.set()
        if not task.cancelled():
            exc = task.exception()
            if exc is not None and self._exception_handler is not None:
                self._exception_handler(exc)
