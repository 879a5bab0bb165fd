"""Exceptions for dupligit."""


class DupligitError(Exception):
    """Base class for every failure a mirror run can report."""


class ConfigError(DupligitError):
    """Raised for missing or invalid configuration, including bad rule patterns.

    Always raised before any source history is processed.
    """


class SourceReadError(DupligitError):
    """Raised when a path cannot be read from the source at a given commit.

    The snapshot builder recovers from it by leaving the file out of that
    commit's tree.
    """

    def __init__(self, commit: str, path: str, reason: str = ""):
        self.commit = commit
        self.path = path
        msg = f"Cannot read {path!r} at {commit[:7]}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CommitCreationError(DupligitError):
    """Raised when a mirror commit cannot be written. Aborts the run."""


class PublishError(DupligitError):
    """Raised when pushing to the destination remote fails.

    The locally replayed history is left on disk so the push can be retried.
    """
