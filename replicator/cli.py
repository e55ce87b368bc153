import click
import getpass
import logging

from config.config_loader import ConfigLoader
from .logging_config import apply_logging
from .reporting.history_report import HistoryReporter
from .storage.sqlite_storage import SQLiteItemStore, SQLiteRunHistory
from .sync.models import SyncContext
from .sync.runner import ReplicationRunner
from .sync.status import Status

logger = logging.getLogger(__name__)


def _load(config_path):
    try:
        cfg = ConfigLoader(config_path).load()
    except Exception as e:
        raise click.ClickException(f"Could not load configuration: {str(e)}")
    apply_logging(cfg)
    return cfg


def _build_runner(cfg) -> ReplicationRunner:
    db_path = cfg['storage']['path']
    return ReplicationRunner(cfg, SQLiteItemStore(db_path), SQLiteRunHistory(db_path))


@click.group()
def cli():
    """Metadata Replication System"""
    pass


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--name', '-n', multiple=True,
              help='Replication to run (repeatable, default: all active)')
@click.option('--progress/--no-progress', default=True,
              help='Show a progress bar')
def run(config, name, progress):
    """Run replications once"""
    cfg = _load(config)
    runner = _build_runner(cfg)
    context = SyncContext(subject=getpass.getuser())

    try:
        results = runner.run_all(list(name) or None, context=context, show_progress=progress)
    except KeyError as e:
        raise click.ClickException(str(e))
    except Exception as e:
        logger.error(f"Replication failed: {str(e)}")
        raise click.ClickException(str(e))

    failed = False
    for replication, status in results.items():
        click.echo(
            f"{replication}: {status.status.value} "
            f"(pushed {status.push_count}, failed {status.push_fail_count}, "
            f"{status.push_bytes} bytes, {status.duration:.1f}s)"
        )
        failed = failed or status.status in (Status.CONNECTION_LOST, Status.CANCELED)

    if failed:
        raise click.exceptions.Exit(1)


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--name', '-n', required=True, help='Replication to inspect')
def plan(config, name):
    """Show what the next run of a replication would request"""
    cfg = _load(config)
    runner = _build_runner(cfg)
    try:
        details = runner.plan(name)
    except KeyError as e:
        raise click.ClickException(str(e))

    click.echo(f"Replication: {details['replication']}")
    click.echo(f"Watermark: {details['watermark'] or 'none (full sync)'}")
    click.echo(f"Failed items to retry: {len(details['failed_ids'])}")
    click.echo(f"Filter: {details['filter']}")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--output', '-o', type=click.Path(), help='Output file path')
def report(config, output):
    """Generate run history report"""
    cfg = _load(config)
    # make sure the history table exists even before the first run
    SQLiteRunHistory(cfg['storage']['path'])
    reporter = HistoryReporter(cfg['storage']['path'])
    report_data = reporter.generate_report()

    if output:
        reporter.save_report(report_data, output)
        click.echo(f"Report saved to {output}")
    else:
        click.echo(reporter.format_report(report_data))


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--host', default=None, help='Interface to bind')
@click.option('--port', '-p', type=int, default=None, help='Port to listen on')
def serve(config, host, port):
    """Serve the replication status API"""
    from .web.app import init_app

    cfg = _load(config)
    web = cfg.get('web') or {}
    app = init_app(_build_runner(cfg))
    app.run(host=host or web.get('host', '127.0.0.1'), port=port or web.get('port', 8080))


if __name__ == '__main__':
    cli()
