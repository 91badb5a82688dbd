"""
The API errors, classified by what the mirror does about them.

The reconciler falls back from creating to replacing on ``409 Conflict``,
and from replacing to creating on ``404 NotFound``; deleting treats
``404 NotFound`` and ``410 Gone`` as already done. The login is rejected
on ``401`` and ``403``, and the reading requests are retried on ``5xx``.
All of them are recognised by the error's class, never by raw statuses.

The transport-level errors (connections, timeouts, TLS) are not converted:
they propagate from ``aiohttp`` as they are. The ``aiohttp``'s own response
error is chained as the cause of the API error.
"""
import collections.abc
import json
from typing import Any, Dict, Mapping, Optional, Type

import aiohttp
from typing_extensions import Literal, TypedDict


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.29/#status-v1-meta
class RawStatus(TypedDict, total=False):
    apiVersion: str
    kind: Literal["Status"]
    code: int
    status: Literal["Success", "Failure"]
    reason: str
    message: str
    details: Mapping[str, Any]


class APIError(Exception):
    """ An API response with an error status, and its ``Status`` object if there was one. """

    def __init__(self, payload: Optional[RawStatus], *, status: int) -> None:
        self.status = status
        self.payload: RawStatus = payload if payload is not None else RawStatus()
        super().__init__(self.payload.get('message'), payload)

    @property
    def code(self) -> Optional[int]:
        return self.payload.get('code')

    @property
    def reason(self) -> Optional[str]:
        return self.payload.get('reason')

    @property
    def message(self) -> Optional[str]:
        return self.payload.get('message')

    @property
    def details(self) -> Optional[Mapping[str, Any]]:
        return self.payload.get('details')


class APIUnauthorizedError(APIError):
    pass


class APIForbiddenError(APIError):
    pass


class APINotFoundError(APIError):
    pass


class APIConflictError(APIError):
    pass


class APIGoneError(APIError):
    pass


class APIServerError(APIError):
    pass


ERRORS_BY_STATUS: Dict[int, Type[APIError]] = {
    401: APIUnauthorizedError,
    403: APIForbiddenError,
    404: APINotFoundError,
    409: APIConflictError,
    410: APIGoneError,
}


def classify(status: int) -> Type[APIError]:
    if status >= 500:
        return APIServerError
    return ERRORS_BY_STATUS.get(status, APIError)


async def _read_status(response: aiohttp.ClientResponse) -> Optional[RawStatus]:
    try:
        payload = await response.json()
    except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
        return None

    # Anything other than a Status can carry the objects' data, e.g. secrets. Never expose it.
    if isinstance(payload, collections.abc.Mapping) and payload.get('kind') == 'Status':
        return RawStatus(**payload)  # type: ignore
    return None


async def check_response(response: aiohttp.ClientResponse) -> None:
    """
    Raise a classified API error if the response's status is an error.
    """
    if response.status < 400:
        return

    # The body must be read before raise_for_status(), which releases the response.
    payload = await _read_status(response)
    try:
        response.raise_for_status()
    except aiohttp.ClientResponseError as e:
        raise classify(response.status)(payload, status=response.status) from e
