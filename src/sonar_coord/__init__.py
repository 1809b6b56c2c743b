"""sonar-coord: local store and claim coordination for static-analysis findings."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sonar-coord")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from sonar_coord.core import CoordDB, Issue, LockRef
from sonar_coord.filters import IssueFilter

__all__ = ["CoordDB", "Issue", "IssueFilter", "LockRef", "__version__"]
