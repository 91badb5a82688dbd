import asyncio
import logging
import signal
import threading
from typing import Collection, List, MutableSequence, Optional, Union

import aiohttp

from kmirror._cogs.aiokits import aiotasks
from kmirror._cogs.clients import auth, errors, fetching, scanning
from kmirror._cogs.configs import configuration
from kmirror._cogs.structs import credentials, references
from kmirror._core.intents import piggybacking
from kmirror._core.reactor import discovery, mirroring

logger = logging.getLogger(__name__)

# Anything that can stop the mirror from outside: e.g. from tests or from the embedding apps.
Flag = Union[aiotasks.Future, asyncio.Event]


class PreconditionError(Exception):
    """ Raised when the mirror cannot start in the given environment. """


def run(
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        settings: Optional[configuration.OperatorSettings] = None,
        connection_info: Optional[credentials.ConnectionInfo] = None,
        stop_flag: Optional[Flag] = None,
) -> None:
    """
    Run the whole mirror synchronously.

    This function should be used to run the mirror in normal sync mode.
    """
    coro = operator(settings=settings, connection_info=connection_info, stop_flag=stop_flag)
    try:
        if loop is not None:
            loop.run_until_complete(coro)
        else:
            asyncio.run(coro)
    except asyncio.CancelledError:
        pass


async def operator(
        *,
        settings: Optional[configuration.OperatorSettings] = None,
        connection_info: Optional[credentials.ConnectionInfo] = None,
        stop_flag: Optional[Flag] = None,
) -> None:
    """
    Run the whole mirror asynchronously.

    This function should be used to run the mirror in an asyncio event-loop
    if the mirror is orchestrated explicitly and manually.

    It is efficiently a login, the startup checks, `spawn_tasks` + `run_tasks`.
    """
    settings = settings if settings is not None else configuration.OperatorSettings()
    info = connection_info if connection_info is not None else piggybacking.login(logger=logger)
    existing_tasks = await aiotasks.all_tasks()
    async with auth.APIContext(info) as context:
        token = auth.context_var.set(context)
        try:
            resources = await startup(settings=settings)
            mirror_tasks = await spawn_tasks(
                settings=settings,
                resources=resources,
                stop_flag=stop_flag,
            )
            await run_tasks(mirror_tasks, ignored=existing_tasks)
        finally:
            auth.context_var.reset(token)


async def startup(
        *,
        settings: configuration.OperatorSettings,
) -> List[references.Resource]:
    """
    Verify the environment and resolve the resource kinds to be mirrored.

    Any failure here is fatal: the mirror does not start at all.
    """
    try:
        version = await scanning.read_version(settings=settings, logger=logger)
    except (errors.APIUnauthorizedError, errors.APIForbiddenError) as e:
        raise credentials.LoginError(f"The API rejects the credentials: {e}") from e
    else:
        logger.info(f"Connected to Kubernetes {version.get('gitVersion', '(unknown version)')}.")

    await check_namespaces(settings=settings)
    resources = await discovery.resolve_resources(settings=settings, logger=logger)
    if not resources:
        logger.warning("No resources are found to be mirrored. The mirror will idle.")
    return resources


async def check_namespaces(
        *,
        settings: configuration.OperatorSettings,
) -> None:
    """
    Ensure that both the source & destination namespaces are usable.

    The namespaces are not created automatically: a typo in the name
    should not lead to a new namespace being silently populated.
    """
    source = settings.mirroring.source_namespace
    destination = settings.mirroring.destination_namespace
    if not source or not destination:
        raise PreconditionError("Both the source and the destination namespaces are required.")
    if source == destination:
        raise PreconditionError(f"The source and the destination namespaces are the same: "
                                f"{source!r}. Mirroring into itself is not possible.")

    for name in [source, destination]:
        try:
            await fetching.read_obj(
                settings=settings,
                resource=references.NAMESPACES,
                namespace=None,
                name=name,
                logger=logger,
            )
        except errors.APINotFoundError:
            raise PreconditionError(f"Namespace {name!r} does not exist.") from None
        except (errors.APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PreconditionError(f"Namespace {name!r} cannot be verified: {e!r}") from e


async def spawn_tasks(
        *,
        settings: configuration.OperatorSettings,
        resources: Collection[references.Resource],
        stop_flag: Optional[Flag] = None,
) -> Collection[aiotasks.Task]:
    """
    Spawn all the tasks needed to run the mirror: one per resource kind.

    The infrastructural tasks are spawned too: to stop on signals or flags.
    """
    loop = asyncio.get_running_loop()
    signal_flag: aiotasks.Future = asyncio.Future()
    tasks: MutableSequence[aiotasks.Task] = []

    # Few common background forever-running infrastructural tasks (irregular root tasks).
    tasks.append(asyncio.create_task(
        name="stop-flag checker",
        coro=_stop_flag_checker(
            signal_flag=signal_flag,
            stop_flag=stop_flag)))
    tasks.append(asyncio.create_task(
        name="ultimate termination",
        coro=_ultimate_termination(
            settings=settings,
            stop_flag=stop_flag)))

    # One root task per resource kind, which runs all the kind's reflecting & routing inside.
    for resource in resources:
        tasks.append(aiotasks.create_guarded_task(
            name=f"mirroring of {resource!r}", logger=logger,
            coro=mirroring.resource_mirror(
                resource=resource,
                settings=settings)))

    # Ensure that all guarded tasks got control for a moment to enter the guard.
    await asyncio.sleep(0)

    # On Ctrl+C or pod termination, cancel all tasks gracefully.
    if threading.current_thread() is threading.main_thread():
        # Handle NotImplementedError when ran on Windows since asyncio only supports Unix signals.
        try:
            loop.add_signal_handler(signal.SIGINT, signal_flag.set_result, signal.SIGINT)
            loop.add_signal_handler(signal.SIGTERM, signal_flag.set_result, signal.SIGTERM)
        except NotImplementedError:
            logger.warning("OS signals are ignored: can't add signal handler in Windows.")
    else:
        logger.warning("OS signals are ignored: running not in the main thread.")

    return tasks


async def run_tasks(
        root_tasks: Collection[aiotasks.Task],
        *,
        ignored: Collection[aiotasks.Task] = frozenset(),
) -> None:
    """
    Orchestrate the tasks and terminate them gracefully when needed.

    The root tasks are expected to run forever. Once any of them exits,
    the whole mirror and all other root tasks should exit.

    Every task created after the mirror's startup is assumed to be a task
    or a sub-task of the mirror, and is cancelled in the end if still running.
    Only the tasks that existed before the startup are ignored.
    """

    # Run the infinite tasks until one of them fails/exits (they never exit normally).
    # If the mirror is cancelled, propagate the cancellation to all the sub-tasks.
    try:
        root_done, root_pending = await aiotasks.wait(root_tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await aiotasks.stop(root_tasks, title="Root", logger=logger, cancelled=True, interval=10)
        hung_tasks = await aiotasks.all_tasks(ignored=ignored)
        await aiotasks.stop(hung_tasks, title="Hung", logger=logger, cancelled=True, interval=1)
        raise

    # If the mirror is intact, but one of the root tasks has exited (successfully or not),
    # cancel all the remaining root tasks, and gracefully exit other spawned sub-tasks.
    root_cancelled, _ = await aiotasks.stop(root_pending, title="Root", logger=logger)

    # After the root tasks are all gone, cancel any spawned sub-tasks (e.g. per-object workers).
    hung_tasks = await aiotasks.all_tasks(ignored=ignored)
    try:
        hung_done, hung_pending = await aiotasks.wait(hung_tasks, timeout=5)
    except asyncio.CancelledError:
        await aiotasks.stop(hung_tasks, title="Hung", logger=logger, cancelled=True, interval=1)
        raise

    # If the mirror is intact, but the timeout is reached, forcely cancel the sub-tasks.
    hung_cancelled, _ = await aiotasks.stop(hung_pending, title="Hung", logger=logger, interval=1)

    # If succeeded or if cancellation is silenced, re-raise from failed tasks (if any).
    await aiotasks.reraise(root_done | root_cancelled | hung_done | hung_cancelled)


def check_flag(flag: Optional[Flag]) -> bool:
    if flag is None:
        return False
    elif isinstance(flag, asyncio.Event):
        return flag.is_set()
    else:
        return flag.done()


async def wait_flag(flag: Flag) -> object:
    if isinstance(flag, asyncio.Event):
        await flag.wait()
        return None
    else:
        return await flag


async def _stop_flag_checker(
        signal_flag: aiotasks.Future,
        stop_flag: Optional[Flag],
) -> None:
    """
    A top-level task for external stopping by setting a stop-flag. Once set,
    this task will exit, and thus all other top-level tasks will be cancelled.
    """

    # Selects the flags to be awaited (if set).
    flags: List[aiotasks.Future] = [signal_flag]
    if stop_flag is not None:
        flags.append(asyncio.create_task(wait_flag(stop_flag), name="stop-flag waiter"))

    # Wait until one of the stoppers is set/raised.
    try:
        done, pending = await asyncio.wait(flags, return_when=asyncio.FIRST_COMPLETED)
        future = done.pop()
        result = await future
    except asyncio.CancelledError:
        pass  # the mirror is stopping for any other reason
    else:
        if result is None:
            logger.info("Stop-flag is raised. The mirror is stopping.")
        elif isinstance(result, signal.Signals):
            logger.info("Signal %s is received. The mirror is stopping.", result.name)
        else:
            logger.info("Stop-flag is set to %r. The mirror is stopping.", result)
    finally:
        for flag in flags:
            if flag is not signal_flag and not flag.done():
                flag.cancel()


async def _ultimate_termination(
        *,
        settings: configuration.OperatorSettings,
        stop_flag: Optional[Flag],
) -> None:
    """
    Ensure that SIGKILL is sent regardless of the mirror's stopping routines.

    Try to be gentle and kill only the thread with the mirror, not the whole
    process or a process group. If this is the main thread (as in most cases),
    this would imply the process termination too.

    Intentional stopping via a stop-flag is ignored.
    """
    # Sleep forever, or until cancelled, which happens when the mirror begins its shutdown.
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        if not check_flag(stop_flag):
            if settings.process.ultimate_exiting_timeout is not None:
                loop = asyncio.get_running_loop()
                loop.call_later(settings.process.ultimate_exiting_timeout,
                                signal.pthread_kill, threading.get_ident(), signal.SIGKILL)
