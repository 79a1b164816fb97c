"""
Console script entrypoint for git-jira-timelog.

Meant to be run right after ``git commit`` (by hand or from a post-commit
hook); the interactive prompts read from the terminal.
"""
from __future__ import annotations


def main() -> None:
    # Import inside function to avoid import-time side effects if this module
    # is imported for introspection.
    from .core import main as _main

    _main()


if __name__ == "__main__":
    main()
