"""Allow ``python -m spelunk``."""

from spelunk.cli import app

app()
