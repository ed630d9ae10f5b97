"""Job queue maintenance commands."""

from typing import Optional

import click

from imagevault.cli.base import CliCommand
from imagevault.job_queue import requeue_dead_letters


@click.command(name='requeue-dead-letters')
@click.option('--name', default=None, help='Only requeue jobs with this name (e.g. tag-image)')
@click.option('--limit', default=None, type=int, help='Maximum number of jobs to requeue')
@click.option('--extra-attempts', default=1, type=int, help='Additional attempts granted to each job')
def requeue_dead_letters_command(name: Optional[str], limit: Optional[int], extra_attempts: int):
    """Move dead-lettered jobs back onto the queue."""
    cmd = RequeueDeadLettersCommand(name, limit, extra_attempts)
    cmd.run()


class RequeueDeadLettersCommand(CliCommand):
    def __init__(self, name: Optional[str], limit: Optional[int], extra_attempts: int):
        super().__init__()
        self.name = name
        self.limit = limit
        self.extra_attempts = extra_attempts

    def run(self):
        self.setup_db()
        try:
            count = requeue_dead_letters(
                self.db,
                name=self.name,
                limit=self.limit,
                extra_attempts=self.extra_attempts,
            )
            click.echo(f"Requeued {count} job(s)")
        finally:
            self.cleanup_db()
