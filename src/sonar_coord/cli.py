"""CLI for the sonar-coord issue coordinator.

Convention-based: discovers .sonar-coord/ by walking up from cwd.

Usage:
    sonar-coord init --project-key=myproj                 # Initialize .sonar-coord/ in cwd
    sonar-coord sync                                       # Fetch and reconcile open issues
    sonar-coord sync --from-file=issues.json               # Reconcile a saved export
    sonar-coord list --rule=java:S2095 --format=prompt     # Remediation brief for a group
    sonar-coord lock --rule=java:S2095 --holder=worker-1   # Claim a group
    sonar-coord resolve --rule=java:S2095 --holder=worker-1
    sonar-coord summary --include-resolved                 # Rule x path matrix
    sonar-coord clear-locks --older-than=2h                # Reclaim a crashed worker's locks
"""

from __future__ import annotations

import click

from sonar_coord import __version__
from sonar_coord.cli_commands import admin, issues, locks


@click.group()
@click.version_option(version=__version__, prog_name="sonar-coord")
def cli() -> None:
    """sonar-coord: coordinate parallel remediation of static-analysis issues."""


admin.register(cli)
issues.register(cli)
locks.register(cli)


if __name__ == "__main__":
    cli()
