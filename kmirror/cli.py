import dataclasses
import functools
from typing import Any, Callable, Optional, Sequence

import click

from kmirror._cogs.configs import configuration
from kmirror._cogs.structs import credentials
from kmirror._core.actions import loggers
from kmirror._core.reactor import discovery, running


@dataclasses.dataclass()
class CLIControls:
    """ Controls for embedding & testing, which are impossible to pass via CLI. """
    stop_flag: Optional[running.Flag] = None
    settings: Optional[configuration.OperatorSettings] = None
    connection_info: Optional[credentials.ConnectionInfo] = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: Optional[bool] = False,
                log_refkey: Optional[str] = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


@click.version_option(prog_name='kmirror')
@click.group(name='kmirror', context_settings=dict(
    auto_envvar_prefix='KMIRROR',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('--from', 'source_namespace', required=True,
              help="The namespace to mirror the objects from.")
@click.option('--to', 'destination_namespace', required=True,
              help="The namespace to mirror the objects to.")
@click.option('-r', '--resource', 'resources', multiple=True,
              help="A resource to mirror, e.g. deployments.v1.apps; all if not specified.")
@click.option('-l', '--selector', 'label_selector', type=str,
              help="A label selector for the source objects, e.g. cluster=my-cluster.")
@click.option('--resync-interval', type=float,
              help="Seconds between full re-syncs of all objects; 0 to disable.")
@click.make_pass_decorator(CLIControls, ensure=True)
def run(
        __controls: CLIControls,
        source_namespace: str,
        destination_namespace: str,
        resources: Sequence[str],
        label_selector: Optional[str],
        resync_interval: Optional[float],
) -> None:
    """ Start mirroring the objects from one namespace to another. """
    if resync_interval is not None and resync_interval < 0:
        raise click.BadParameter("must not be negative.", param_hint='--resync-interval')

    # Map the CLI options into the settings object.
    settings = __controls.settings if __controls.settings is not None else configuration.OperatorSettings()
    settings.mirroring.source_namespace = source_namespace
    settings.mirroring.destination_namespace = destination_namespace
    settings.mirroring.resources = [name for name in resources if name]
    if label_selector:
        settings.mirroring.label_selector = label_selector
    if resync_interval is not None:
        settings.mirroring.resync_interval = resync_interval

    try:
        return running.run(
            settings=settings,
            connection_info=__controls.connection_info,
            stop_flag=__controls.stop_flag,
        )
    except (credentials.LoginError, running.PreconditionError, discovery.DiscoveryError) as e:
        raise click.ClickException(str(e)) from e
