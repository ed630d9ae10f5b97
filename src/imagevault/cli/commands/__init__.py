"""CLI commands package."""

from . import (
    embeddings,
    inspect,
    jobs,
    worker,
)

__all__ = [
    'embeddings',
    'inspect',
    'jobs',
    'worker',
]
