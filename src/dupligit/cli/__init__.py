"""dupligit CLI: sanitize and mirror a git repository."""

from ._helpers import main  # noqa: F401

# Import command modules to register Click commands with the main group.
from . import _run  # noqa: F401
