"""
git_jira_timelog package

Logs time against the Jira ticket referenced by the latest git commit.
- Re-exports the pipeline functions from git_jira_timelog.core.
- Provides a package-level main() suitable for console_scripts entrypoints.
"""

from .core import *  # noqa: F401,F403

__version__ = "1.0.0"


def main() -> None:
    """Package entrypoint. Delegates to git_jira_timelog.core.main()."""
    from .core import main as _main
    _main()
