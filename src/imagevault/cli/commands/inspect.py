"""Inspection commands: list images and show configuration."""

from typing import Optional

import click

from imagevault.cli.base import CliCommand
from imagevault.metadata import ImageRecord
from imagevault.settings import settings
from imagevault.status import ImageStatus


@click.command(name='list-images')
@click.option('--status', 'status_filter', type=click.Choice([s.value for s in ImageStatus]), default=None,
              help='Only show images in this lifecycle state')
@click.option('--limit', default=20, type=int, help='Maximum number of images to show')
def list_images_command(status_filter: Optional[str], limit: int):
    """List images newest first with their status and rejection reason."""
    cmd = ListImagesCommand(status_filter, limit)
    cmd.run()


class ListImagesCommand(CliCommand):
    """Command to list image records."""

    def __init__(self, status_filter: Optional[str], limit: int):
        super().__init__()
        self.status_filter = status_filter
        self.limit = limit

    def run(self):
        """Execute list images command."""
        self.setup_db()
        try:
            self._list_images()
        finally:
            self.cleanup_db()

    def _list_images(self):
        query = self.db.query(ImageRecord)
        if self.status_filter:
            query = query.filter(ImageRecord.status == self.status_filter)
        rows = query.order_by(ImageRecord.created_at.desc(), ImageRecord.id.desc()).limit(self.limit).all()

        if not rows:
            click.echo("No images found")
            return

        click.echo(f"\n{len(rows)} image(s):\n")
        for row in rows:
            line = f"  {row.id}  {row.status:<8}  {row.created_at.isoformat()}  {row.storage_path}"
            if row.rejection_reason:
                line += f"  reason={row.rejection_reason}"
            if row.description:
                line += f"  \"{row.description}\""
            click.echo(line)


@click.command(name='show-config')
def show_config_command():
    """Display the effective upload, thumbnail, model and queue configuration."""
    click.echo(f"\nEnvironment: {settings.environment}")
    click.echo(f"Bucket: {settings.storage_bucket_name} (policy object: {settings.bucket_policy_key})")
    click.echo(
        f"Upload fallback: max {settings.upload_max_size_bytes} bytes, "
        f"types {', '.join(settings.upload_allowed_mime_types)}"
    )
    click.echo(f"Thumbnail function: {settings.thumbnail_function_url}")
    click.echo(
        f"Thumbnail poll: {settings.thumbnail_poll_initial_delay_seconds}s -> "
        f"{settings.thumbnail_poll_max_delay_seconds}s cap, {settings.thumbnail_poll_budget_seconds}s budget"
    )
    click.echo(
        f"Tagging queue: {settings.tagging_job_name}, {settings.tagging_max_attempts} attempts, "
        f"{settings.tagging_backoff_ms}ms backoff"
    )
    click.echo("\nModels:")
    for key, value in settings.model_config_audit().items():
        click.echo(f"  {key}: {value}")
