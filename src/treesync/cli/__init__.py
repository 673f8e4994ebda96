"""treesync CLI: sync a folder with a git repository."""

from ._helpers import main  # noqa: F401

# Import command modules to register Click commands with the main group.
from . import _sync, _conflicts  # noqa: F401
