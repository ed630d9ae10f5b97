"""imagevault CLI entry point with lazy command registration."""

from __future__ import annotations

import click

_COMMANDS_REGISTERED = False


def _register_commands_once() -> None:
    global _COMMANDS_REGISTERED
    if _COMMANDS_REGISTERED:
        return

    from .commands import embeddings, inspect, jobs, worker

    cli.add_command(worker.run_worker_command, name="run-worker")
    cli.add_command(inspect.list_images_command, name="list-images")
    cli.add_command(inspect.show_config_command, name="show-config")
    cli.add_command(embeddings.attach_embedding_command, name="attach-embedding")
    cli.add_command(jobs.requeue_dead_letters_command, name="requeue-dead-letters")

    _COMMANDS_REGISTERED = True


class _LazyCLIGroup(click.Group):
    def list_commands(self, ctx):
        _register_commands_once()
        return super().list_commands(ctx)

    def get_command(self, ctx, cmd_name):
        _register_commands_once()
        return super().get_command(ctx, cmd_name)


@click.group(cls=_LazyCLIGroup)
def cli():
    """imagevault CLI for operating the upload service."""
    pass


if __name__ == "__main__":
    cli()
