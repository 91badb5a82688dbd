"""
All configuration flags, options, settings to fine-tune the mirror.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

The settings are never stored globally: the root object is passed
explicitly to every component that needs it (the CLI only fills it in).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults, except for
the namespaces, which must be set for the mirror to start).
"""
import dataclasses
from typing import Iterable, List, Optional


@dataclasses.dataclass
class ProcessSettings:
    """
    Settings for the mirror's OS process: e.g. when started via CLI as `kmirror run`.
    """

    ultimate_exiting_timeout: Optional[float] = 10 * 60
    """
    How long to wait for the graceful exit before SIGKILL'ing the mirror.

    The countdown goes from when a graceful signal arrives (SIGTERM/SIGINT),
    regardless of what is happening in the graceful exiting routine.

    Measured in seconds. Set to `None` to disable (on your own risk).
    """


@dataclasses.dataclass
class MirroringSettings:
    """
    What is mirrored from where to where, and how often it is fully re-synced.
    """

    source_namespace: Optional[str] = None
    """
    The namespace to mirror the objects from. Must exist at startup.
    """

    destination_namespace: Optional[str] = None
    """
    The namespace to mirror the objects to. Must exist at startup.
    """

    resources: List[str] = dataclasses.field(default_factory=list)
    """
    The resource names to mirror, e.g. ``"deployments.v1.apps"``,
    ``"deployments.apps"``, ``"configmaps.v1"``, or just ``"configmaps"``.

    If empty (the default), all namespaced watchable resources of the preferred
    API versions are discovered at startup and mirrored ("discovery mode").
    """

    label_selector: Optional[str] = None
    """
    An optional label selector to limit the mirrored source objects,
    e.g. ``"cluster=my-cluster"``. Objects not matching it are invisible
    to the mirror: they are neither created nor deleted in the destination.
    """

    resync_interval: Optional[float] = 60 * 60
    """
    How often (in seconds) all cached objects are re-delivered as modified,
    so that the destination drift caused by lost events is healed.

    Set to `None` or ``0`` to disable the periodic resyncs.
    """


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: Optional[float] = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the API requests, except for the watch-streams.
    """

    connect_timeout: Optional[float] = None
    """
    A timeout for the HTTP/HTTPS connection establishing, except watch-streams.
    """

    error_backoffs: Iterable[float] = (1, 1, 2, 3, 5)
    """
    Backoff intervals in case of connection or server-side errors.

    Only the idempotent reading requests are retried (listing, discovery,
    preflight checks). The writing requests fail at once: the event is dropped
    and the next resync is expected to repair the destination.

    To disable the retries, set it to ``[]`` or ``()``.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: Optional[float] = None
    """
    The maximum duration of one streaming request.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: Optional[float] = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    Once it is reached, the stream is considered stalled, and the objects are re-listed.
    """

    connect_timeout: Optional[float] = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_backoff: float = 0.1
    """
    How long should a pause be between watch requests (to prevent API flooding).
    """


@dataclasses.dataclass
class QueueingSettings:
    """
    Settings for how the events are routed to the per-object workers.
    """

    worker_limit: Optional[int] = None
    """
    How many per-object workers can run simultaneously for one resource kind.
    If ``None``, there is no limit to the number of workers (as many as needed).
    """

    idle_timeout: float = 5.0
    """
    How soon an idle worker is exited and garbage-collected if no events arrive.
    """

    exit_timeout: float = 2.0
    """
    How soon a worker is cancelled when the parent router is going to exit.
    This is the time given to the worker to deplete and process the queue.
    """


@dataclasses.dataclass
class OperatorSettings:
    process: ProcessSettings = dataclasses.field(default_factory=ProcessSettings)
    mirroring: MirroringSettings = dataclasses.field(default_factory=MirroringSettings)
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
