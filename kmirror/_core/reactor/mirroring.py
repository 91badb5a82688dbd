"""
Mirroring of a single resource kind: the reflector, the router, the reconciler.

The reflector fills the kind's backlog, the router drains it into
the per-object workers, the workers call the reconciler's handler.
All three live as long as the mirror lives, i.e. until cancelled.
"""
import asyncio
import logging
from typing import Optional

from kmirror._cogs.aiokits import aiotasks
from kmirror._cogs.configs import configuration
from kmirror._cogs.structs import references
from kmirror._core.actions import reconciling
from kmirror._core.reactor import queueing, reflecting

logger = logging.getLogger(__name__)


async def resource_mirror(
        *,
        resource: references.Resource,
        settings: configuration.OperatorSettings,
        processor: Optional[queueing.EventProcessor] = None,  # None for the actual mirroring
) -> None:
    """
    Mirror one resource kind from the source to the destination namespace.

    If either the reflector or the router fails, the other one is stopped,
    and the failure is escalated (it is a bug, not an API/network issue).
    """
    backlog: queueing.Backlog = asyncio.Queue()
    reflector = reflecting.Reflector(resource=resource, settings=settings, backlog=backlog)
    handler = processor if processor is not None else reconciling.MirrorHandler(
        resource=resource,
        settings=settings,
    )

    logger.info(f"Mirroring {resource!r} from {settings.mirroring.source_namespace!r} "
                f"to {settings.mirroring.destination_namespace!r}.")
    tasks = [
        asyncio.create_task(reflector.run(), name=f"reflector of {resource!r}"),
        asyncio.create_task(queueing.router(
            backlog=backlog,
            processor=handler,
            settings=settings,
            resource=resource,
        ), name=f"router of {resource!r}"),
    ]
    try:
        done, _ = await aiotasks.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        await aiotasks.stop(tasks, title=f"{resource!r} mirroring", quiet=True, logger=logger)
    await aiotasks.reraise(done)
