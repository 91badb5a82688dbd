import functools
import logging

import click.testing
import pytest

from kmirror.cli import main


@pytest.fixture(autouse=True)
def _restore_root_logging():
    logger = logging.getLogger()
    original_level = logger.level
    original_handlers = logger.handlers[:]
    yield
    logger.handlers[:] = original_handlers
    logger.setLevel(original_level)


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner):
    return functools.partial(runner.invoke, main)


@pytest.fixture()
def real_run(mocker):
    return mocker.patch('kmirror._core.reactor.running.run')


@pytest.fixture()
def real_configure(mocker):
    return mocker.patch('kmirror._core.actions.loggers.configure')
