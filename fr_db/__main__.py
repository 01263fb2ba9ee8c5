"""Entrypoint for `python -m fr_db`."""

from .cli import main


if __name__ == "__main__":
    main()
