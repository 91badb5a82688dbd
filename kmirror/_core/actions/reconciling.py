"""
Replaying the source events into the destination namespace.

The reconciler is stateless: it does not compare the objects and does not
remember what was written before. Every added or modified object is written
as a whole; every deleted object is deleted by name. The races with other
writers (or with the mirror's own earlier events) are resolved by fixed
fallbacks: create-then-replace and replace-then-create.

All failures are contained per event: they are logged and the event is
dropped. The next resync of the kind re-delivers all objects, so the
destination converges eventually anyway.
"""
import asyncio
import logging

import aiohttp

from kmirror._cogs.clients import creating, deleting, errors, replacing
from kmirror._cogs.configs import configuration
from kmirror._cogs.structs import bodies, references
from kmirror._core.actions import loggers, transforming

logger = logging.getLogger(__name__)

# Failures of the writes that are only logged: the next resync repairs the destination.
TRANSIENT_ERRORS = (errors.APIError, aiohttp.ClientError, asyncio.TimeoutError)


class MirrorHandler:
    """
    Writes the objects of one resource kind to the destination namespace.

    The handler is used as the event processor of the kind's router:
    it is called sequentially for the events of one object, and concurrently
    for the events of different objects.
    """

    def __init__(
            self,
            *,
            resource: references.Resource,
            settings: configuration.OperatorSettings,
    ) -> None:
        super().__init__()
        self.resource = resource
        self.settings = settings

    @property
    def namespace(self) -> str:
        namespace = self.settings.mirroring.destination_namespace
        if not namespace:
            raise RuntimeError("The destination namespace is not configured.")
        return namespace

    async def __call__(self, *, event: bodies.WatchEvent) -> None:
        if event.type == bodies.EventType.ADDED:
            await self.on_added(event.object)
        elif event.type == bodies.EventType.MODIFIED:
            await self.on_modified(event.object)
        elif event.type == bodies.EventType.DELETED:
            await self.on_deleted(event.object)
        else:
            logger.warning(f"Ignoring an unsupported event type {event.type!r} for {event.key}.")

    async def on_added(self, body: bodies.RawBody) -> None:
        await self._upsert(body, reason='added')

    async def on_modified(self, body: bodies.RawBody) -> None:
        # The destination object might have never been created (e.g. a failed or lost event):
        # so it is created first, exactly as if it was added, and replaced only if it exists.
        await self._upsert(body, reason='modified')

    async def on_deleted(self, body: bodies.RawBody) -> None:
        object_logger = loggers.ObjectLogger(body=body)
        name = body.get('metadata', {}).get('name')
        if not name:
            object_logger.error(f"Cannot delete a mirror of {self.resource!r}: the object has no name.")
            return

        try:
            await deleting.delete_obj(
                settings=self.settings,
                resource=self.resource,
                namespace=self.namespace,
                name=name,
                logger=object_logger,
            )
        except (errors.APINotFoundError, errors.APIGoneError):
            object_logger.info(f"Deleting the {self.resource!r} mirror in {self.namespace!r} "
                               f"is skipped: it is already absent.")
        except TRANSIENT_ERRORS as e:
            object_logger.error(f"Deleting the {self.resource!r} mirror in {self.namespace!r} "
                                f"has failed: {e!r}")
        else:
            object_logger.info(f"Deleted the {self.resource!r} mirror in {self.namespace!r}.")

    async def _upsert(self, body: bodies.RawBody, *, reason: str) -> None:
        object_logger = loggers.ObjectLogger(body=body)
        try:
            mirrored = transforming.transform(body, self.namespace)
        except transforming.TransformError as e:
            object_logger.error(f"Skipping the {reason} {self.resource!r}: {e}")
            return

        name = mirrored['metadata']['name']
        try:
            created = await self._create(mirrored, logger=object_logger)
            if not created:
                replaced = await self._replace(mirrored, name=name, logger=object_logger)
                if not replaced:
                    # Deleted between our creation & replacement attempts. Create it once more.
                    recreated = await self._create(mirrored, logger=object_logger)
                    if not recreated:
                        object_logger.warning(f"Mirroring the {reason} {self.resource!r} to "
                                              f"{self.namespace!r} is skipped: it is re-created "
                                              f"by someone else meanwhile.")
        except TRANSIENT_ERRORS as e:
            object_logger.error(f"Mirroring the {reason} {self.resource!r} to {self.namespace!r} "
                                f"has failed: {e!r}")

    async def _create(
            self,
            body: bodies.RawBody,
            *,
            logger: loggers.ObjectLogger,
    ) -> bool:
        """ Create the mirror; return ``False`` if it already exists (409). """
        try:
            await creating.create_obj(
                settings=self.settings,
                resource=self.resource,
                body=body,
                logger=logger,
            )
        except errors.APIConflictError:
            logger.debug(f"The {self.resource!r} mirror in {self.namespace!r} already exists.")
            return False
        else:
            logger.info(f"Created the {self.resource!r} mirror in {self.namespace!r}.")
            return True

    async def _replace(
            self,
            body: bodies.RawBody,
            *,
            name: str,
            logger: loggers.ObjectLogger,
    ) -> bool:
        """ Overwrite the existing mirror; return ``False`` if it is absent (404). """
        try:
            await replacing.replace_obj(
                settings=self.settings,
                resource=self.resource,
                namespace=self.namespace,
                name=name,
                body=body,
                logger=logger,
            )
        except errors.APINotFoundError:
            logger.debug(f"The {self.resource!r} mirror in {self.namespace!r} has vanished.")
            return False
        else:
            logger.info(f"Updated the {self.resource!r} mirror in {self.namespace!r}.")
            return True
