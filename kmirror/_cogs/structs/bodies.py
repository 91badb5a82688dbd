"""
All the structures coming from/to the Kubernetes API.

The usage of these classes is spread over the codebase, so they are extracted
into a separate module of such type definitions.

The objects are never parsed into per-kind classes: every resource kind,
including those discovered only at runtime, is represented by the same
generic JSON-decoded mapping. The type definitions below only declare
the fields that the mirror itself looks into; all other fields
(``spec``, ``data``, ``status``, etc.) are carried through as they are.
"""
import enum
from typing import Any, List, Mapping, NamedTuple, Optional, Union

from typing_extensions import Literal, TypedDict

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

#
# Everything marked "raw" is a plain unwrapped unprocessed data as JSON-decoded
# from Kubernetes API, usually as retrieved in watching or fetching API calls.
# "Input" is a parsed JSON as is, while "event" is an "input" without "errors".
#

RawInputType = Literal['ADDED', 'MODIFIED', 'DELETED', 'ERROR', 'BOOKMARK']


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Annotations
    finalizers: List[str]
    resourceVersion: str
    generation: int
    deletionTimestamp: str
    deletionGracePeriodSeconds: int
    creationTimestamp: str
    selfLink: str
    managedFields: List[Mapping[str, Any]]
    ownerReferences: List[Mapping[str, Any]]


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta


# A special payload for type==ERROR (this is not a connection or client error).
class RawError(TypedDict, total=False):
    apiVersion: str     # usually: Literal['v1']
    kind: str           # usually: Literal['Status']
    metadata: Mapping[Any, Any]
    code: int
    reason: str
    status: str
    message: str


# As received from the stream before processing the errors and special cases.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: Union[RawBody, RawError]


class EventType(str, enum.Enum):
    """ The normalized types of changes, as emitted by the reflectors. """
    ADDED = 'ADDED'
    MODIFIED = 'MODIFIED'
    DELETED = 'DELETED'

    def __str__(self) -> str:
        return self.value


class ObjectKey(NamedTuple):
    """
    The identity of an object within its resource kind.

    Only the namespace & name are used. The uids & resource versions are
    specific to the source namespace and are never used for mirroring.
    """
    namespace: Optional[str]
    name: str

    def __str__(self) -> str:
        return f'{self.namespace}/{self.name}' if self.namespace else self.name


class WatchEvent(NamedTuple):
    """
    A single normalized change of a single object, as emitted by the reflector.

    The resource version is the one of the source object at the moment
    when the event was observed; it is used only for logging & ordering.
    """
    type: EventType
    object: RawBody
    resource_version: Optional[str] = None

    @property
    def key(self) -> ObjectKey:
        return get_key(self.object)


def get_key(body: RawBody) -> ObjectKey:
    metadata = body.get('metadata', {})
    return ObjectKey(namespace=metadata.get('namespace'), name=metadata.get('name', ''))


def get_version(body: RawBody) -> Optional[str]:
    return body.get('metadata', {}).get('resourceVersion')
