"""
Logging of the mirror: formats, per-object loggers, and the configuration.

Every message about a specific mirrored object goes through `ObjectLogger`,
which carries the object's reference in the log record (as ``k8s_ref``).
The text formatters can prefix such messages with the object's namespace
and name; the JSON formatters put the reference into a separate field
for the log parsers (and can prefix the messages too).
"""
import copy
import enum
import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping, MutableMapping, Optional, \
                   TextIO, Tuple, Type, Union

from pythonjsonlogger.core import RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter

from kmirror._cogs.helpers import typedefs
from kmirror._cogs.structs import bodies

logger = logging.getLogger('kmirror.objects')

DEFAULT_JSON_REFKEY = 'object'

# The third-party loggers that are too noisy unless debugging the mirror itself.
LOW_LEVEL_LOGGERS = ('asyncio',)

# Upper boundaries of the levels, as named in the severity field of the JSON logs.
SEVERITIES = (
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
)


class LogFormat(enum.Enum):
    """ Log formats, as specified on CLI. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # a marker only, never used as a format string


def get_severity(levelno: int) -> str:
    for boundary, severity in SEVERITIES:
        if levelno <= boundary:
            return severity
    return 'fatal'


def get_prefix(ref: Mapping[str, Any]) -> str:
    namespace, name = ref.get('namespace'), ref.get('name', '')
    return f"[{namespace}/{name}]" if namespace else f"[{name}]"


class ObjectFormatter(logging.Formatter):
    """ A marker of our own formatters, to recognise our own handlers. """


class ObjectTextFormatter(ObjectFormatter, logging.Formatter):
    pass


class ObjectJsonFormatter(ObjectFormatter, JsonFormatter):
    """
    JSON logs with the object reference & severity as separate fields.

    The raw ``k8s_ref`` extra is excluded from the output; it is re-exposed
    under the configured key instead (``"object"`` by default).
    """

    def __init__(self, *args: Any, refkey: Optional[str] = None, **kwargs: Any) -> None:
        kwargs['reserved_attrs'] = set(kwargs.get('reserved_attrs', RESERVED_ATTRS)) | {'k8s_ref'}
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, **kwargs)
        self.refkey: str = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: Dict[str, Any],
            record: logging.LogRecord,
            message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        ref = getattr(record, 'k8s_ref', None)
        if ref is not None:
            log_record[self.refkey] = ref
        log_record.setdefault('severity', get_severity(record.levelno))


class ObjectPrefixingMixin(ObjectFormatter):
    def format(self, record: logging.LogRecord) -> str:
        ref = getattr(record, 'k8s_ref', None)
        if ref is not None:
            record = copy.copy(record)  # the other handlers must see the original message
            record.msg = f"{get_prefix(ref)} {record.msg}"
        return super().format(record)


class ObjectPrefixingTextFormatter(ObjectPrefixingMixin, ObjectTextFormatter):
    pass


class ObjectPrefixingJsonFormatter(ObjectPrefixingMixin, ObjectJsonFormatter):
    pass


class ObjectLogger(typedefs.LoggerAdapter):
    """
    A logger of a single source object, made for every event.

    The object's identity is copied out of the body at creation, so that
    the body can be modified (e.g. transformed) without affecting the logs.
    """

    def __init__(self, *, body: bodies.RawBody) -> None:
        metadata = body.get('metadata', {})
        super().__init__(logger, dict(k8s_ref=dict(
            apiVersion=body.get('apiVersion'),
            kind=body.get('kind'),
            name=metadata.get('name'),
            namespace=metadata.get('namespace'),
        )))

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> Tuple[str, MutableMapping[str, Any]]:
        # The stdlib adapter replaces the call's extras with its own; merge them instead.
        kwargs['extra'] = {**(self.extra or {}), **kwargs.get('extra', {})}
        return msg, kwargs


# Our own handlers are replaced on re-configuration (e.g. in the CLI tests),
# since the old ones can write into the already closed streams.
if TYPE_CHECKING:
    class _MirrorStreamHandler(logging.StreamHandler[TextIO]):
        pass
else:
    class _MirrorStreamHandler(logging.StreamHandler):
        pass


def configure(
        debug: Optional[bool] = None,
        verbose: Optional[bool] = None,
        quiet: Optional[bool] = None,
        log_format: Union[LogFormat, str] = LogFormat.FULL,
        log_prefix: Optional[bool] = False,
        log_refkey: Optional[str] = None,
) -> None:
    """ Set up the root logger with one handler of our own, as requested on CLI. """
    handler = _MirrorStreamHandler()
    handler.setFormatter(make_formatter(log_format=log_format,
                                        log_prefix=log_prefix,
                                        log_refkey=log_refkey))

    root = logging.getLogger()
    root.handlers[:] = [h for h in root.handlers if not isinstance(h, _MirrorStreamHandler)]
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug or verbose else logging.WARNING if quiet else logging.INFO)

    for name in LOW_LEVEL_LOGGERS:
        low_level = logging.getLogger(name)
        low_level.propagate = bool(debug)
        if not debug:
            low_level.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: Union[LogFormat, str] = LogFormat.FULL,
        log_prefix: Optional[bool] = False,
        log_refkey: Optional[str] = None,
) -> ObjectFormatter:
    """
    Pick the formatter for the format; ``log_prefix=None`` means the format's default.

    The text logs are prefixed by default, the JSON logs are not (they have the refkey).
    """
    if log_prefix is None:
        log_prefix = log_format is not LogFormat.JSON

    if log_format is LogFormat.JSON:
        json_cls: Type[ObjectJsonFormatter]
        json_cls = ObjectPrefixingJsonFormatter if log_prefix else ObjectJsonFormatter
        return json_cls(refkey=log_refkey)

    if isinstance(log_format, LogFormat):
        fmt = log_format.value
    elif isinstance(log_format, str):
        fmt = log_format
    else:
        raise ValueError(f"Unsupported log format: {log_format!r}")
    text_cls: Type[ObjectTextFormatter]
    text_cls = ObjectPrefixingTextFormatter if log_prefix else ObjectTextFormatter
    return text_cls(fmt)
