# app/cli/run_sync.py
"""
Run a sync or repricing cycle from the command line, outside the web process.

    python -m app.cli.run_sync                      # one full sync cycle
    python -m app.cli.run_sync --connection <id>    # one connection
    python -m app.cli.run_sync --repricing          # one repricing cycle
"""
import asyncio
import json
import sys

import click

from app.core.exceptions import ConnectionNotFoundError, SyncError
from app.core.logging_config import configure_logging
from app.database import engine
from app.services.bootstrap import build_services


@click.command()
@click.option('--connection', 'connection_id', default=None, help='Sync only this connection id')
@click.option('--repricing', is_flag=True, help='Run one repricing cycle instead of a sync cycle')
def run_sync(connection_id, repricing):
    """Run one cycle and print its report as JSON"""
    configure_logging()

    async def _run():
        services = build_services()
        try:
            if repricing:
                report = await services.repricing_scheduler.run_cycle()
                return report.to_dict(), True
            if connection_id:
                result = await services.orchestrator.sync_one(connection_id)
                return result.to_dict(), result.success
            report = await services.orchestrator.run_cycle()
            return report.to_dict(), report.success
        finally:
            await engine.dispose()

    try:
        output, ok = asyncio.run(_run())
    except ConnectionNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)
    except SyncError as e:
        click.echo(f"Sync could not run: {e}", err=True)
        sys.exit(3)

    click.echo(json.dumps(output, indent=2, default=str))
    if not ok:
        sys.exit(1)

if __name__ == "__main__":
    run_sync()
