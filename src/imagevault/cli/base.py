"""Shared database lifecycle for CLI commands."""

from sqlalchemy.orm import sessionmaker

from imagevault.database import build_engine


class CliCommand:
    """Base for commands that open one session for the duration of ``run``."""

    def __init__(self):
        self.engine = None
        self.Session = None
        self.db = None

    def setup_db(self):
        self.engine = build_engine()
        self.Session = sessionmaker(bind=self.engine)
        self.db = self.Session()

    def cleanup_db(self):
        if self.db is not None:
            self.db.close()
            self.db = None
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def run(self):
        """Execute command - override in subclasses."""
        raise NotImplementedError

    def __enter__(self):
        self.setup_db()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup_db()
