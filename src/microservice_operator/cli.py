import logging
import sys

from typing import List
from typing_extensions import Annotated

import typer.core

typer.core.rich = None

import typer  # noqa: E402

from .config import DeletionStrategy, Settings  # noqa: E402


app = typer.Typer(add_completion=False)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option('--verbose', '-v', envvar='MSO_VERBOSE')] = False,
    debug: Annotated[bool, typer.Option('--debug', '-d', envvar='MSO_DEBUG')] = False,
) -> None:
    """
    MicroService operator.
    """
    setattr(ctx, 'obj', {})

    logging.basicConfig(
        level=logging.ERROR,
        format='%(levelname)s: %(module)s: %(message)s',
        stream=sys.stderr,
    )
    log = logging.getLogger('microservice_operator')
    log_level = logging.ERROR
    if verbose:
        log_level = logging.INFO
    elif debug:
        log_level = logging.DEBUG
    log.setLevel(log_level)
    ctx.obj['log_level'] = log_level
    ctx.obj['log'] = log
    ctx.obj['debug'] = debug


@app.command(name='run', short_help='Run the operator')
def run(
    ctx: typer.Context,
    all_namespaces: Annotated[
        bool,
        typer.Option(
            '--all-namespaces',
            envvar='MSO_ALL_NAMESPACES',
            help='Watch all namespaces.',
        ),
    ] = False,
    namespaces: Annotated[
        List[str],
        typer.Option(
            '--namespace',
            envvar='MSO_NAMESPACES',
            help='Watch the given namespaces instead of the default. Can be given multiple times.',
        ),
    ] = None,
    workers: Annotated[
        int,
        typer.Option(
            '--workers',
            envvar='MSO_WORKERS',
            min=1,
            help='Number of MicroServices reconciled in parallel.',
        ),
    ] = Settings.concurrent_reconciles,
    reconcile_timeout: Annotated[
        float,
        typer.Option(
            '--reconcile-timeout',
            envvar='MSO_RECONCILE_TIMEOUT',
            min=1,
            help='Seconds after which a single reconcile is aborted and retried.',
        ),
    ] = Settings.reconcile_timeout,
    deletion_strategy: Annotated[
        DeletionStrategy,
        typer.Option(
            '--deletion-strategy',
            envvar='MSO_DELETION_STRATEGY',
            help='Leave the cleanup of owned objects to the garbage collector, or hold a finalizer and delete them ourselves.',
        ),
    ] = Settings.deletion_strategy,
    conflict_retries: Annotated[
        int,
        typer.Option(
            '--conflict-retries',
            envvar='MSO_CONFLICT_RETRIES',
            min=0,
            help='How often a reconcile is retried from a fresh read after a write conflict.',
        ),
    ] = Settings.conflict_retries,
    max_backoff: Annotated[
        float,
        typer.Option(
            '--max-backoff',
            envvar='MSO_MAX_BACKOFF',
            min=0,
            help='Upper bound in seconds of the delay between retries of a failing reconcile.',
        ),
    ] = Settings.max_backoff,
) -> None:
    settings = Settings(
        namespaces=list(namespaces) if namespaces else None,
        all_namespaces=all_namespaces,
        concurrent_reconciles=workers,
        reconcile_timeout=reconcile_timeout,
        deletion_strategy=deletion_strategy,
        conflict_retries=conflict_retries,
        max_backoff=max_backoff,
    )
    ctx.obj['log'].debug('settings: %r', settings)

    from . import manager

    manager.run(settings, debug=ctx.obj['debug'])


@app.command(name='crd', short_help='Print the MicroService CRD')
def crd(
    ctx: typer.Context,
) -> None:
    from .resources import microservice_crd, resources_to_yaml

    print(resources_to_yaml(microservice_crd()))


if __name__ == '__main__':
    app()
