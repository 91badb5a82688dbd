import logging
from typing import Collection

import pytest

from kmirror._core.actions.loggers import LogFormat, ObjectFormatter, ObjectJsonFormatter, \
                                          ObjectPrefixingJsonFormatter, \
                                          ObjectPrefixingTextFormatter, ObjectTextFormatter, \
                                          configure, make_formatter


@pytest.fixture(autouse=True)
def _clear_own_handlers():
    logger = logging.getLogger()
    original_level = logger.level
    logger.handlers[:] = [
        handler for handler in logger.handlers
        if not isinstance(handler, logging.StreamHandler) or
           not isinstance(handler.formatter, ObjectFormatter)
    ]
    original_handlers = logger.handlers[:]
    yield
    logger.handlers[:] = original_handlers
    logger.setLevel(original_level)


def _get_own_handlers(logger: logging.Logger) -> Collection[logging.Handler]:
    return [
        handler for handler in logger.handlers
        if isinstance(handler, logging.StreamHandler) and
           isinstance(handler.formatter, ObjectFormatter)
    ]


def test_own_formatter_is_used():
    configure()
    logger = logging.getLogger()
    own_handlers = _get_own_handlers(logger)
    assert len(own_handlers) == 1


def test_reconfiguring_replaces_own_handlers():
    configure()
    configure()
    logger = logging.getLogger()
    own_handlers = _get_own_handlers(logger)
    assert len(own_handlers) == 1


@pytest.mark.parametrize('log_format', [LogFormat.FULL, LogFormat.PLAIN, '%(message)s'])
def test_formatter_nonprefixed_text(log_format):
    configure(log_format=log_format, log_prefix=False)
    own_handlers = _get_own_handlers(logging.getLogger())
    assert type(own_handlers[0].formatter) is ObjectTextFormatter


@pytest.mark.parametrize('log_format', [LogFormat.FULL, LogFormat.PLAIN, '%(message)s'])
def test_formatter_prefixed_text(log_format):
    configure(log_format=log_format, log_prefix=True)
    own_handlers = _get_own_handlers(logging.getLogger())
    assert type(own_handlers[0].formatter) is ObjectPrefixingTextFormatter


def test_formatter_nonprefixed_json():
    configure(log_format=LogFormat.JSON, log_prefix=False)
    own_handlers = _get_own_handlers(logging.getLogger())
    assert type(own_handlers[0].formatter) is ObjectJsonFormatter


def test_formatter_prefixed_json():
    configure(log_format=LogFormat.JSON, log_prefix=True)
    own_handlers = _get_own_handlers(logging.getLogger())
    assert type(own_handlers[0].formatter) is ObjectPrefixingJsonFormatter


@pytest.mark.parametrize('log_format, expected', [
    (LogFormat.FULL, ObjectPrefixingTextFormatter),
    (LogFormat.PLAIN, ObjectPrefixingTextFormatter),
    (LogFormat.JSON, ObjectJsonFormatter),
])
def test_prefixing_defaults_depend_on_the_format(log_format, expected):
    formatter = make_formatter(log_format=log_format, log_prefix=None)
    assert type(formatter) is expected


def test_unsupported_formats_are_rejected():
    with pytest.raises(ValueError):
        make_formatter(log_format=123)


@pytest.mark.parametrize('kwargs, expected_level', [
    (dict(), logging.INFO),
    (dict(quiet=True), logging.WARNING),
    (dict(verbose=True), logging.DEBUG),
    (dict(debug=True), logging.DEBUG),
])
def test_levels(kwargs, expected_level):
    configure(**kwargs)
    assert logging.getLogger().level == expected_level


def test_asyncio_logs_are_silenced_unless_debugging():
    configure(verbose=True)
    assert logging.getLogger('asyncio').propagate is False
    configure(debug=True)
    assert logging.getLogger('asyncio').propagate is True
