"""
The credentials of the mirror to access the cluster.

Only what a plain HTTP client can use is supported: the server's address,
the TLS trust & client certificates, and the ``Authorization`` header
(either basic with a username & password, or a token with a scheme).
They are collected from the in-cluster service account or the kubeconfig
(see :mod:`kmirror._core.intents.piggybacking`) and turned into
an HTTP session by :class:`kmirror._cogs.clients.auth.APIContext`.
"""
import dataclasses
from typing import Optional


class LoginError(Exception):
    """ The credentials are absent, unreadable, or rejected by the cluster. """


@dataclasses.dataclass(frozen=True)
class ConnectionInfo:
    server: str  # e.g. "https://10.96.0.1:443"

    # TLS: the server's trust, and the client's own certificate if used.
    ca_path: Optional[str] = None
    ca_data: Optional[bytes] = None
    insecure: Optional[bool] = None
    certificate_path: Optional[str] = None
    certificate_data: Optional[bytes] = None
    private_key_path: Optional[str] = None
    private_key_data: Optional[bytes] = None

    # HTTP authorization: either basic, or a token of some scheme (Bearer by default).
    username: Optional[str] = None
    password: Optional[str] = None
    scheme: Optional[str] = None
    token: Optional[str] = None

    default_namespace: Optional[str] = None
