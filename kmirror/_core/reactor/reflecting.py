"""
The list-then-watch state machine of a single resource kind.

The reflector keeps an in-memory cache of the source objects of its kind
and emits the normalized change events into the kind's backlog::

    INIT -> LISTING -> WATCHING -> (stream error) -> RELISTING -> WATCHING -> ... -> STOPPED

* On listing & re-listing, all objects are put into the cache, and each one
  is emitted as added. The previously cached objects that are absent in
  the fresh list are emitted as deleted: their deletions were missed while
  the stream was broken.
* On watching, the cache follows the stream, and the events are passed
  through. The resource version of the latest event is the checkpoint
  to continue watching from when the stream is closed by the server.
* On stream errors (``410 Gone`` for outdated checkpoints, connection losses,
  stalled streams), the objects are re-listed after a short backoff.
* Periodically (as configured), all cached objects are re-emitted as modified,
  so that the destination converges even if some writes have failed.

The cache and the checkpoint belong to the reflector only; the other
components receive the events, never the cache itself.
"""
import asyncio
import enum
import json
import logging
from typing import Dict, Optional

import aiohttp

from kmirror._cogs.aiokits import aiotasks
from kmirror._cogs.clients import errors, fetching, watching
from kmirror._cogs.configs import configuration
from kmirror._cogs.structs import bodies, references
from kmirror._core.reactor import queueing

logger = logging.getLogger(__name__)

# Failures of the watch-streams that lead to re-listing. Anything else is a bug and is escalated.
# Garbled lines (broken JSON or UTF-8) are failures of the stream, not of the mirror.
STREAM_FAILURES = (
    errors.APIError,
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
    asyncio.TimeoutError,
    json.JSONDecodeError,
    UnicodeDecodeError,
)

# Failures of the listing that are retried after a backoff.
LISTING_FAILURES = (
    errors.APIError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


class Phase(enum.Enum):
    INIT = 'init'
    LISTING = 'listing'
    WATCHING = 'watching'
    RELISTING = 'relisting'
    STOPPED = 'stopped'


class StreamError(Exception):
    """ The watch-stream is broken; only re-listing can restore the consistency. """


class Reflector:
    """
    The list-watch-resync cycle of one resource kind in the source namespace.

    The events are put into the backlog without waiting for their processing:
    the backlog is unbounded, and the processing is done by the kind's router.
    """

    phase: Phase
    resource_version: Optional[str]
    cache: Dict[bodies.ObjectKey, bodies.RawBody]

    def __init__(
            self,
            *,
            resource: references.Resource,
            settings: configuration.OperatorSettings,
            backlog: queueing.Backlog,
            namespace: Optional[str] = None,
    ) -> None:
        super().__init__()
        self.resource = resource
        self.settings = settings
        self.backlog = backlog
        self.namespace = references.NamespaceName(
            namespace if namespace is not None else settings.mirroring.source_namespace or '')
        self.phase = Phase.INIT
        self.resource_version = None
        self.cache = {}

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} for {self.resource!r} in {self.namespace!r}: {self.phase.value}>'

    async def run(self) -> None:
        """
        List, watch, re-list, and re-sync the objects until cancelled.

        Never fails on the API or network errors: they are logged and retried.
        """
        resync_task: Optional[aiotasks.Task] = None
        interval = self.settings.mirroring.resync_interval
        if interval:
            resync_task = aiotasks.create_guarded_task(
                name=f"resyncing of {self.resource!r}",
                coro=self.resync_forever(interval),
                cancellable=True,
                logger=logger,
            )

        try:
            self.phase = Phase.LISTING
            await self.relist_until_success()
            while True:
                try:
                    await self.watch()
                except StreamError as e:
                    logger.warning(f"Re-listing {self.resource!r} after a stream error: {e}")
                    await asyncio.sleep(self.settings.watching.reconnect_backoff)
                    self.phase = Phase.RELISTING
                    await self.relist_until_success()
                else:
                    # The stream is closed by the server (e.g. timed out): continue from the checkpoint.
                    logger.debug(f"Re-watching {self.resource!r} since {self.resource_version!r}.")
                    await asyncio.sleep(self.settings.watching.reconnect_backoff)
        finally:
            self.phase = Phase.STOPPED
            if resync_task is not None:
                await aiotasks.stop([resync_task], title="resyncing", quiet=True, cancelled=True)

    async def relist_until_success(self) -> None:
        while True:
            try:
                await self.relist()
            except LISTING_FAILURES as e:
                logger.error(f"Listing {self.resource!r} has failed; will retry: {e!r}")
                await asyncio.sleep(self.settings.watching.reconnect_backoff)
            else:
                return

    async def relist(self) -> None:
        """
        Replace the cache with the fresh list of objects; emit the differences.

        Objects that vanished since the last known state are emitted as deleted.
        All listed objects are emitted as added, even if they were cached already:
        the stream could have missed their modifications.
        """
        items, resource_version = await fetching.list_objs(
            settings=self.settings,
            resource=self.resource,
            namespace=self.namespace,
            label_selector=self.settings.mirroring.label_selector,
            logger=logger,
        )

        # No awaits from here on: the cache & the emitted events must be consistent.
        listed = {bodies.get_key(item): item for item in items}
        for key in list(self.cache):
            if key not in listed:
                body = self.cache.pop(key)
                self._emit(bodies.EventType.DELETED, body)
        for key, body in listed.items():
            self.cache[key] = body
            self._emit(bodies.EventType.ADDED, body)
        self.resource_version = resource_version
        logger.debug(f"Listed {len(listed)} objects of {self.resource!r} "
                     f"at {self.resource_version!r}.")

    async def watch(self) -> None:
        """
        Watch the objects from the checkpoint until the stream is closed.

        A graceful closing (e.g. by the server-side timeout) returns normally.
        All other closings are raised as `StreamError`.
        """
        self.phase = Phase.WATCHING
        stream = watching.watch_objs(
            settings=self.settings,
            resource=self.resource,
            namespace=self.namespace,
            since=self.resource_version,
            label_selector=self.settings.mirroring.label_selector,
            logger=logger,
        )
        try:
            async for raw_input in stream:
                self.process(raw_input)
        except STREAM_FAILURES as e:
            raise StreamError(f"{e.__class__.__name__}: {e}") from e
        finally:
            # Release the HTTP response now, not when the generator is garbage-collected.
            await stream.aclose()

    def process(self, raw_input: bodies.RawInput) -> None:
        """ Apply one raw watch-event to the cache & the checkpoint; emit it if needed. """
        raw_type = raw_input.get('type')
        raw_object = raw_input.get('object')

        if raw_type == 'ERROR':
            # A special payload: a Status, not an object (e.g. "410 Gone" for old checkpoints).
            status: bodies.RawError = raw_object or {}  # type: ignore
            raise StreamError(f"Error in the watch-stream: code={status.get('code')!r}, "
                              f"reason={status.get('reason')!r}, message={status.get('message')!r}")

        body: bodies.RawBody = raw_object or {}  # type: ignore
        if raw_type == 'BOOKMARK':
            self.resource_version = bodies.get_version(body) or self.resource_version
        elif raw_type in ('ADDED', 'MODIFIED'):
            self.cache[bodies.get_key(body)] = body
            self._emit(bodies.EventType(raw_type), body)
            self.resource_version = bodies.get_version(body) or self.resource_version
        elif raw_type == 'DELETED':
            self.cache.pop(bodies.get_key(body), None)
            self._emit(bodies.EventType.DELETED, body)
            self.resource_version = bodies.get_version(body) or self.resource_version
        else:
            logger.warning(f"Ignoring an unsupported event type {raw_type!r} of {self.resource!r}.")

    async def resync_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            count = self.resync()
            logger.debug(f"Re-synced {count} objects of {self.resource!r}.")

    def resync(self) -> int:
        """ Re-emit all the cached objects as modified, regardless of their changes. """
        for body in list(self.cache.values()):
            self._emit(bodies.EventType.MODIFIED, body)
        return len(self.cache)

    def _emit(self, event_type: bodies.EventType, body: bodies.RawBody) -> None:
        event = bodies.WatchEvent(type=event_type, object=body,
                                  resource_version=bodies.get_version(body))
        self.backlog.put_nowait(event)
