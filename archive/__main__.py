"""
Module entry point for: python -m archive

Allows running the archive tooling directly as a module:
    python -m archive serve [options]
    python -m archive export-static [options]
    python -m archive print <course_id> [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
