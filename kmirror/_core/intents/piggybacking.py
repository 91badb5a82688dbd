"""
Minimalistic authentication from the usual sources of credentials.

kmirror is not a client library, and avoids bringing too much logic
for proper authentication, especially the complex auth-providers & plugins.
Only two sources are supported, in this order:

* The in-cluster service account (when the mirror runs in a pod).
* The kubeconfig files (``$KUBECONFIG`` or ``~/.kube/config``).

.. seealso::
    :mod:`kmirror._cogs.structs.credentials` for what is extracted.
"""
import os
from typing import Any, Dict, Optional

import yaml

from kmirror._cogs.helpers import typedefs
from kmirror._cogs.structs import credentials

# Keep as constants to make them patchable in tests.
# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
SERVICE_ACCOUNT_DIR = '/var/run/secrets/kubernetes.io/serviceaccount'
DEFAULT_KUBECONFIG = '~/.kube/config'


def login(*, logger: typedefs.Logger) -> credentials.ConnectionInfo:
    """
    Get the connection info from the first source that has it, or fail.
    """
    info = login_with_service_account(logger=logger)
    if info is None:
        info = login_with_kubeconfig(logger=logger)
    if info is None:
        raise credentials.LoginError("Cannot authenticate neither in-cluster, nor via kubeconfig.")
    return info


def login_with_service_account(*, logger: typedefs.Logger) -> Optional[credentials.ConnectionInfo]:
    """
    Get the raw credentials of the pod's service account, if mounted.

    The API server is taken from the environment variables injected
    into all pods, or from the cluster-internal DNS name if they are absent.
    """
    token_path = os.path.join(SERVICE_ACCOUNT_DIR, 'token')
    ns_path = os.path.join(SERVICE_ACCOUNT_DIR, 'namespace')
    ca_path = os.path.join(SERVICE_ACCOUNT_DIR, 'ca.crt')

    if not os.path.exists(token_path):
        return None

    with open(token_path, encoding='utf-8') as f:
        token = f.read().strip()

    namespace: Optional[str] = None
    if os.path.exists(ns_path):
        with open(ns_path, encoding='utf-8') as f:
            namespace = f.read().strip()

    host = os.environ.get('KUBERNETES_SERVICE_HOST')
    port = os.environ.get('KUBERNETES_SERVICE_PORT')
    if host and ':' in host:  # IPv6
        host = f'[{host}]'
    server = f'https://{host}:{port or 443}' if host else 'https://kubernetes.default.svc'

    logger.debug("Configured in-cluster with the service account.")
    return credentials.ConnectionInfo(
        server=server,
        ca_path=ca_path if os.path.exists(ca_path) else None,
        token=token or None,
        default_namespace=namespace or None,
    )


def login_with_kubeconfig(*, logger: typedefs.Logger) -> Optional[credentials.ConnectionInfo]:
    """
    Get the raw credentials of the current context of the kubeconfig files.

    Several files can be listed in ``$KUBECONFIG``; the first value of each
    field wins, as ``kubectl`` does. No tokens are refreshed via the providers.
    """
    kubeconfig = os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser(DEFAULT_KUBECONFIG)):
        kubeconfig = DEFAULT_KUBECONFIG
    if not kubeconfig:
        return None

    paths = [path.strip() for path in kubeconfig.split(os.pathsep)]
    paths = [os.path.expanduser(path) for path in paths if path]

    current_context: Optional[str] = None
    contexts: Dict[Any, Any] = {}
    clusters: Dict[Any, Any] = {}
    users: Dict[Any, Any] = {}
    for path in paths:
        try:
            with open(path, encoding='utf-8') as f:
                config = yaml.safe_load(f.read()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise credentials.LoginError(f"Cannot read the kubeconfig {path!r}: {e}") from e

        if current_context is None:
            current_context = config.get('current-context')
        for item in config.get('contexts') or []:
            contexts.setdefault(item['name'], item.get('context') or {})
        for item in config.get('clusters') or []:
            clusters.setdefault(item['name'], item.get('cluster') or {})
        for item in config.get('users') or []:
            users.setdefault(item['name'], item.get('user') or {})

    if current_context is None:
        raise credentials.LoginError("Current context is not set in kubeconfigs.")
    try:
        context = contexts[current_context]
        cluster = clusters[context['cluster']]
        user = users.get(context.get('user'), {})
    except KeyError as e:
        raise credentials.LoginError(f"The kubeconfig context {current_context!r} "
                                     f"refers to an unknown entry: {e}") from e

    server = cluster.get('server')
    if not server:
        raise credentials.LoginError(f"The kubeconfig context {current_context!r} has no server.")

    provider_token = user.get('auth-provider', {}).get('config', {}).get('access-token')

    logger.debug(f"Configured via kubeconfig with the context {current_context!r}.")
    return credentials.ConnectionInfo(
        server=server,
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token') or provider_token,
        default_namespace=context.get('namespace'),
    )
