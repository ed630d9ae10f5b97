"""Embedding commands."""

from typing import Optional

import click

from imagevault.cli.base import CliCommand
from imagevault.embeddings import EmbeddingGateway
from imagevault.errors import ImageVaultError
from imagevault.metadata import ImageRecord
from imagevault.status import ImageStatus
from imagevault.vector_index import SqlVectorIndex


@click.command(name='attach-embedding')
@click.option('--image-id', default=None, help='Embed a single image description')
@click.option('--all-missing', is_flag=True, help='Embed every accepted image that has a description but no vector')
@click.option('--limit', default=None, type=int, help='Maximum number of images to embed with --all-missing')
def attach_embedding_command(image_id: Optional[str], all_missing: bool, limit: Optional[int]):
    """Embed image descriptions and upsert them into the vector collection."""
    if not image_id and not all_missing:
        raise click.UsageError("Pass --image-id or --all-missing")
    cmd = AttachEmbeddingCommand(image_id, all_missing, limit)
    cmd.run()


class AttachEmbeddingCommand(CliCommand):
    """Command to (re)index caption embeddings."""

    def __init__(self, image_id: Optional[str], all_missing: bool, limit: Optional[int]):
        super().__init__()
        self.image_id = image_id
        self.all_missing = all_missing
        self.limit = limit

    def run(self):
        """Execute attach embedding command."""
        self.setup_db()
        try:
            self._attach()
        finally:
            self.cleanup_db()

    def _target_ids(self, gateway: EmbeddingGateway) -> list:
        if self.image_id:
            return [self.image_id]
        from imagevault.metadata import VectorPoint

        indexed = {
            row.point_id
            for row in self.db.query(VectorPoint.point_id)
            .filter(VectorPoint.collection_name == gateway.collection_name)
            .all()
        }
        query = (
            self.db.query(ImageRecord.id)
            .filter(
                ImageRecord.status == ImageStatus.ACCEPTED.value,
                ImageRecord.description.isnot(None),
            )
            .order_by(ImageRecord.created_at.asc())
        )
        ids = [row.id for row in query.all() if row.id not in indexed]
        return ids[: self.limit] if self.limit else ids

    def _attach(self):
        gateway = EmbeddingGateway(SqlVectorIndex(self.db))
        gateway.ensure_collection()
        targets = self._target_ids(gateway)
        if not targets:
            click.echo("Nothing to embed")
            return

        done = 0
        for target in targets:
            record = self.db.query(ImageRecord).filter(ImageRecord.id == target).first()
            if record is None:
                click.echo(f"  ✗ {target}: not found", err=True)
                continue
            if not record.description:
                click.echo(f"  ✗ {target}: no description", err=True)
                continue
            try:
                gateway.index_caption(record.id, record.description)
            except ImageVaultError as exc:
                click.echo(f"  ✗ {target}: {exc}", err=True)
                continue
            done += 1
            click.echo(f"  ✓ {target}")
        click.echo(f"\nEmbedded {done}/{len(targets)} image(s)")
