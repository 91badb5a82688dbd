"""
The main kmirror module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the top-level interface,
# as it is seen by the users. So, we export the individual functions.

from kmirror._cogs.configs.configuration import (
    OperatorSettings,
)
from kmirror._cogs.helpers.typedefs import (
    Logger,
)
from kmirror._cogs.helpers.versions import (
    version as __version__,
)
from kmirror._cogs.structs.bodies import (
    RawBody,
    EventType,
    ObjectKey,
    WatchEvent,
)
from kmirror._cogs.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from kmirror._cogs.structs.references import (
    Resource,
)
from kmirror._core.actions.loggers import (
    configure,
    LogFormat,
    ObjectLogger,
)
from kmirror._core.actions.transforming import (
    transform,
    TransformError,
)
from kmirror._core.reactor.discovery import (
    DiscoveryError,
)
from kmirror._core.reactor.running import (
    run,
    operator,
    spawn_tasks,
    run_tasks,
    PreconditionError,
)

__all__ = [
    'OperatorSettings',
    'Logger',
    'RawBody',
    'EventType',
    'ObjectKey',
    'WatchEvent',
    'LoginError',
    'ConnectionInfo',
    'Resource',
    'configure',
    'LogFormat',
    'ObjectLogger',
    'transform',
    'TransformError',
    'DiscoveryError',
    'run',
    'operator',
    'spawn_tasks',
    'run_tasks',
    'PreconditionError',
]
