"""Queue worker command."""

import logging
from typing import Optional

import click

from imagevault.worker import run_loop


@click.command(name='run-worker')
@click.option('--once', is_flag=True, help='Process at most one job and exit')
@click.option('--poll-seconds', default=None, type=float, help='Idle wait between queue polls (default: JOB_WORKER_POLL_SECONDS)')
@click.option('--lease-seconds', default=None, type=int, help='How long a claimed job stays leased (default: JOB_WORKER_LEASE_SECONDS)')
@click.option('--log-level', default='INFO', help='Logging level')
def run_worker_command(once: bool, poll_seconds: Optional[float], lease_seconds: Optional[int], log_level: str):
    """Run the background job worker (tag-image captioning)."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    processed = run_loop(once=once, poll_seconds=poll_seconds, lease_seconds=lease_seconds)
    click.echo(f"Processed {processed} job(s)")
