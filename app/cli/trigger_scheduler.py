# app/cli/trigger_scheduler.py
"""
External cron client for the scheduler webhooks.

Meant to run from a platform cron job, e.g. every 15 minutes:

    python -m app.cli.trigger_scheduler --base-url https://sync.example.com
"""
import os
import sys

import click
import httpx

from app.core.security import SCHEDULER_SECRET_HEADER

TARGETS = {
    "sync": "/sync/scheduler",
    "repricing": "/repricing/scheduler",
}


def trigger(base_url: str, target: str, secret: str, timeout: float = 30.0) -> httpx.Response:
    url = base_url.rstrip("/") + TARGETS[target]
    with httpx.Client(timeout=timeout) as client:
        return client.post(url, headers={SCHEDULER_SECRET_HEADER: secret})


@click.command()
@click.option('--base-url', default=lambda: os.getenv("SYNC_SERVICE_URL", "http://localhost:8080"), show_default="SYNC_SERVICE_URL or http://localhost:8080")
@click.option('--target', type=click.Choice(sorted(TARGETS)), default="sync")
@click.option('--secret', default=lambda: os.getenv("SCHEDULER_SECRET", ""), help='Defaults to SCHEDULER_SECRET')
def trigger_scheduler(base_url, target, secret):
    """Ask the service to run one background cycle"""
    try:
        response = trigger(base_url, target, secret)
    except httpx.HTTPError as e:
        click.echo(f"Request failed: {e}", err=True)
        sys.exit(1)

    if response.status_code != 202:
        click.echo(f"Scheduler call rejected with {response.status_code}: {response.text}", err=True)
        sys.exit(1)

    click.echo(response.json().get("message", "accepted"))

if __name__ == "__main__":
    trigger_scheduler()
