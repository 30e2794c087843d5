"""
Module entry point for: python -m qbank

Allows running the engine directly as a module:
    python -m qbank ingest <source_root> [options]
    python -m qbank verify
    python -m qbank serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
