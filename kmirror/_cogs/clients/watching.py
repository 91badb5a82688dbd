"""
Watching and streaming the raw watch-events.

This is only the low-level part: one watch-request from a known checkpoint
(the resource version) until the stream is closed by either side.
The state machine that lists, watches, re-lists, and re-syncs the objects
is in :mod:`kmirror._core.reactor.reflecting`.

Connection errors, payload errors, and timeouts are escalated as is:
the reflector treats them as stream errors and re-lists the objects.
"""
from typing import AsyncGenerator, Dict, Optional

import aiohttp

from kmirror._cogs.clients import api
from kmirror._cogs.configs import configuration
from kmirror._cogs.helpers import typedefs
from kmirror._cogs.structs import bodies, references


async def watch_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        since: Optional[str] = None,
        label_selector: Optional[str] = None,
        logger: typedefs.Logger,
) -> AsyncGenerator[bodies.RawInput, None]:
    """
    Watch objects of a specific resource type since a specific resource version.

    The bookmarks are requested too: they are not the object changes, but they
    advance the checkpoint, so that the re-watching has less chances to fail
    with "410 Gone" after long periods of inactivity.
    """
    params: Dict[str, str] = {}
    params['watch'] = 'true'
    params['allowWatchBookmarks'] = 'true'
    if since is not None:
        params['resourceVersion'] = since
    if label_selector:
        params['labelSelector'] = label_selector
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(settings.watching.server_timeout)

    connect_timeout = (
        settings.watching.connect_timeout if settings.watching.connect_timeout is not None else
        settings.networking.connect_timeout if settings.networking.connect_timeout is not None else
        settings.networking.request_timeout
    )

    # Stream the parsed events from the response until it is closed server-side.
    async for raw_input in api.stream(
        url=resource.get_url(namespace=namespace, params=params),
        logger=logger,
        settings=settings,
        timeout=aiohttp.ClientTimeout(
            total=settings.watching.client_timeout,
            sock_connect=connect_timeout,
        ),
    ):
        yield raw_input
