"""Entry point for ``python -m nimbridge``."""

from nimbridge.cli.commands import app

if __name__ == "__main__":
    app()
