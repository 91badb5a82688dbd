"""
Low-level HTTP access to the Kubernetes API: one call is one request.

All calls go through :func:`request`, which resolves the URL against
the cluster's server, applies the timeouts, and converts the errors into
the API error classes. The reading requests are retried on the server-side
and connection errors as configured; the writing requests never are,
so that a write is never silently applied twice.
"""
import asyncio
import collections.abc
import itertools
import json
from typing import Any, AsyncIterator, Iterator, Mapping, Optional, Tuple

import aiohttp

from kmirror._cogs.clients import auth, errors
from kmirror._cogs.configs import configuration
from kmirror._cogs.helpers import typedefs

IDEMPOTENT_METHODS = frozenset({'get', 'head', 'options'})
RETRIABLE_ERRORS = (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError)


def _attempts(
        method: str,
        settings: configuration.OperatorSettings,
) -> Iterator[Tuple[int, str, Optional[float]]]:
    """
    Yield the attempts' numbers, labels, and the backoffs after them (``None`` for the last one).
    """
    backoffs = settings.networking.error_backoffs if method.lower() in IDEMPOTENT_METHODS else ()
    if not isinstance(backoffs, collections.abc.Iterable):
        backoffs = [backoffs]
    total = f"/{len(backoffs) + 1}" if isinstance(backoffs, collections.abc.Sized) else ""
    delays = itertools.chain(backoffs, [None])
    for number, delay in enumerate(delays, start=1):
        yield number, f"#{number}{total}", delay


@auth.authenticated
async def request(
        method: str,
        url: str,  # absolute, or relative to the server's root.
        *,
        settings: configuration.OperatorSettings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        context: Optional[auth.APIContext] = None,  # injected by the decorator
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    """
    Perform a request and check its status, but do not read the response.
    """
    if context is None:
        raise RuntimeError("API context is not injected by the decorator.")

    if '://' not in url:
        url = f"{context.server.rstrip('/')}/{url.lstrip('/')}"
    if timeout is None:
        timeout = aiohttp.ClientTimeout(total=settings.networking.request_timeout,
                                        sock_connect=settings.networking.connect_timeout)

    what = f"{method.upper()} {url}"
    for number, attempt, backoff in _attempts(method, settings):
        try:
            response = await context.session.request(
                method=method,
                url=url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            await errors.check_response(response)
        except RETRIABLE_ERRORS as e:
            if backoff is None:
                if number > 1:
                    logger.error(f"Request attempt {attempt} failed; escalating: {what} -> {e!r}")
                raise
            logger.error(f"Request attempt {attempt} failed; will retry: {what} -> {e!r}")
            await asyncio.sleep(backoff)
        else:
            return response

    raise RuntimeError("The request attempts are exhausted without an outcome.")


async def _call(
        method: str,
        url: str,
        *,
        settings: configuration.OperatorSettings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    response = await request(method, url, payload=payload, headers=headers, timeout=timeout,
                             settings=settings, logger=logger)
    async with response:
        return await response.json()


async def get(url: str, **kwargs: Any) -> Any:
    return await _call('get', url, **kwargs)


async def post(url: str, **kwargs: Any) -> Any:
    return await _call('post', url, **kwargs)


async def put(url: str, **kwargs: Any) -> Any:
    return await _call('put', url, **kwargs)


async def delete(url: str, **kwargs: Any) -> Any:
    return await _call('delete', url, **kwargs)


async def stream(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> AsyncIterator[Any]:
    """
    Yield the JSON documents of a long-living response, one per line.
    """
    response = await request('get', url, headers=headers, timeout=timeout,
                             settings=settings, logger=logger)
    async with response:
        async for line in iter_jsonlines(response.content):
            yield json.loads(line.decode('utf-8'))


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Split the response's content into non-empty lines, whatever their length.

    ``aiohttp``'s own line iteration is limited to 128 KB per line,
    but a serialized object (e.g. a big secret or configmap) can be larger.
    """
    tail = b''
    async for chunk in content.iter_chunked(chunk_size):
        *lines, rest = (tail + chunk).split(b'\n')
        tail = rest
        for line in lines:
            if line:
                yield line
    if tail:
        yield tail
