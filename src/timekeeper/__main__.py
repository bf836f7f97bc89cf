"""Allow ``python -m timekeeper``."""

from timekeeper.cli.main import app

if __name__ == "__main__":
    app()
