"""
The authenticated HTTP session of the mirror, shared by all API calls.

The session is made once from the credentials at startup and is put into
a context variable, which all the mirror's tasks inherit. The API calls
get it injected by the `authenticated` decorator, so the session is never
passed around explicitly. The credentials are not renewed:
if they expire, the ``401 Unauthorized`` errors propagate as usual.
"""
import base64
import contextlib
import functools
import os
import ssl
import tempfile
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional, TypeVar, Union, cast

import aiohttp

from kmirror._cogs.helpers import versions
from kmirror._cogs.structs import credentials

context_var: ContextVar['APIContext'] = ContextVar('context_var')

_F = TypeVar('_F', bound=Callable[..., Any])


def authenticated(fn: _F) -> _F:
    """ Inject the current API context into the call, unless it is passed explicitly. """

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        if kwargs.get('context') is None:
            try:
                kwargs['context'] = context_var.get()
            except LookupError:
                raise credentials.LoginError("The API context is not set; login first.") from None
        return await fn(*args, **kwargs)

    return cast(_F, wrapper)


class APIContext:
    """
    An HTTP session to the cluster, and the server's info for building URLs.

    It is an async context manager that closes the session on exit.
    """

    session: aiohttp.ClientSession
    server: str
    default_namespace: Optional[str]

    def __init__(self, info: credentials.ConnectionInfo) -> None:
        super().__init__()
        self.server = info.server
        self.default_namespace = info.default_namespace

        basic_auth: Optional[aiohttp.BasicAuth] = None
        if info.username and info.password:
            basic_auth = aiohttp.BasicAuth(info.username, info.password)

        self.session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=0, ssl=_make_ssl_context(info)),
            headers=_make_headers(info),
            auth=basic_auth,
        )

    async def __aenter__(self) -> 'APIContext':
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.session.close()


def _make_headers(info: credentials.ConnectionInfo) -> Dict[str, str]:
    headers = {'User-Agent': f'kmirror/{versions.version or "unknown"}'}
    authorization = ' '.join(filter(None, [info.scheme or ('Bearer' if info.token else None),
                                           info.token]))
    if authorization:
        headers['Authorization'] = authorization
    return headers


def _make_ssl_context(info: credentials.ConnectionInfo) -> ssl.SSLContext:
    context = ssl.create_default_context(
        purpose=ssl.Purpose.SERVER_AUTH,
        cafile=os.path.expanduser(info.ca_path) if info.ca_path else None,
        cadata=decode_to_pem(info.ca_data) if info.ca_data is not None else None,
    )

    # The client certificates are loaded from files only: the inline data
    # are written into temporary files, which exist only while loading.
    with contextlib.ExitStack() as stack:
        cert_path = _as_file(stack, info.certificate_path, info.certificate_data)
        pkey_path = _as_file(stack, info.private_key_path, info.private_key_data)
        if cert_path and pkey_path:
            context.load_cert_chain(certfile=cert_path, keyfile=pkey_path)

    if info.insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _as_file(
        stack: contextlib.ExitStack,
        path: Optional[str],
        data: Optional[bytes],
) -> Optional[str]:
    if path:
        return os.path.expanduser(path)
    if data:
        file = stack.enter_context(tempfile.NamedTemporaryFile(buffering=0))
        file.write(decode_to_pem(data).encode('ascii'))
        return file.name
    return None


def decode_to_pem(data: Union[str, bytes]) -> str:
    """ Accept PEM as is, or base64-encoded PEM (as in kubeconfigs' ``*-data`` fields). """
    text = data.decode('ascii') if isinstance(data, bytes) else data
    if text.startswith('-----BEGIN '):
        return text
    return base64.b64decode(text).decode('ascii')
