"""Allow ``python -m cdspine``."""

from cdspine.cli.app import app

app()
