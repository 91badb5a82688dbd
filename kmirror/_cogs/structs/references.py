"""
References to the resource kinds, as discovered in the cluster or configured.

A resource kind is identified by its API group, version, and plural name:
that is all the API needs in the URLs. The other names (kind, singular,
short names) are used to resolve the user-given names of the resources,
and the capabilities (scope, verbs) decide whether the kind can be mirrored.
"""
import dataclasses
import urllib.parse
from typing import FrozenSet, Mapping, NewType, Optional, Tuple

# A name of a namespace that is known (or at least assumed) to exist.
NamespaceName = NewType('NamespaceName', str)

# A namespace as used in the API calls, where `None` means the cluster-wide calls.
Namespace = Optional[NamespaceName]


@dataclasses.dataclass(frozen=True, eq=False, repr=False)
class Resource:
    """
    A resource kind in a specific API version, e.g. ``deployments.v1.apps``.

    Two references are equal if they point to the same API endpoint,
    regardless of the informational fields, which can be absent
    (e.g. in the references made by hand rather than by discovery).
    """

    group: str  # "" for the core API.
    version: str
    plural: str

    kind: Optional[str] = None
    singular: Optional[str] = None
    shortcuts: FrozenSet[str] = frozenset()

    namespaced: Optional[bool] = None
    """ ``None`` means unknown, and is treated as cluster-scoped in the URLs. """

    preferred: bool = True
    """ Whether the version is the preferred one in its group, as the cluster says. """

    verbs: FrozenSet[str] = frozenset()
    """
    The verbs the API supports for this kind, e.g. ``{"list", "watch", "create"}``.
    These are the API's capabilities, not the permissions granted by RBAC.
    """

    @property
    def _identity(self) -> Tuple[str, str, str]:
        return self.group, self.version, self.plural

    def __hash__(self) -> int:
        return hash(self._identity)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Resource):
            return NotImplemented
        return self._identity == other._identity

    def __repr__(self) -> str:
        return '.'.join(part for part in self._identity[::-1] if part)

    def get_url(
            self,
            *,
            server: Optional[str] = None,
            namespace: Namespace = None,
            name: Optional[str] = None,
            params: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Build an API URL for the objects of this kind.

        Without a namespace, the URL is cluster-wide (e.g. for listing in all
        namespaces); without a name, it is the URL of the list (or collection).
        A specific namespaced object always needs its namespace, and
        a cluster-scoped one must not have any.
        """
        if not self.namespaced and namespace is not None:
            raise ValueError(f"Namespaces are not supported for cluster-scoped {self!r}.")
        if self.namespaced and namespace is None and name is not None:
            raise ValueError(f"Namespaces are required for specific objects of {self!r}.")

        prefix = f'/apis/{self.group}/{self.version}' if self.group else f'/api/{self.version}'
        path = f'{prefix}/namespaces/{namespace}' if namespace is not None else prefix
        path = f'{path}/{self.plural}' if name is None else f'{path}/{self.plural}/{name}'
        if params:
            path = f'{path}?{urllib.parse.urlencode(params, encoding="utf-8")}'
        return path if server is None else f"{server.rstrip('/')}{path}"


# The namespaces are checked for existence before mirroring.
NAMESPACES = Resource('', 'v1', 'namespaces', kind='Namespace', namespaced=False)
