"""Remote publishing for dupligit: credentials, SSH override, push and fetch.

Credential resolution is an explicit, ordered strategy.  For a configured
``targetRepo`` the first source that applies wins:

1. Credentials already embedded in the URL (``https://user:pw@host/...``),
   or an SSH locator (``git@host:path``, ``ssh://...``): used unchanged.
2. A token from the environment: ``DUPLIGIT_TOKEN``, then ``GITHUB_TOKEN``.
3. The configured ``tokenCommand``, run through the shell; its stripped
   stdout is the token.

Tokens are injected into ``http(s)`` URLs only.  The environment is passed
in explicitly and never modified.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import quote, urlparse, urlunparse

from dulwich.client import HTTPUnauthorized
from dulwich.client import get_transport_and_path as _get_transport_and_path
from dulwich.errors import GitProtocolError, NotGitRepository
from dulwich.protocol import ZERO_SHA
from dulwich.repo import Repo

from .exceptions import PublishError

if TYPE_CHECKING:
    from .config import MirrorConfig
    from .repo import MirrorRepo

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = ("DUPLIGIT_TOKEN", "GITHUB_TOKEN")

_SCP_LIKE = re.compile(r"^[\w.+-]+@[\w.-]+:(?!//)")
_REMOTE_SCHEMES = ("http://", "https://", "git://", "ssh://", "git+ssh://", "ssh+git://")
_TRANSPORT_ERRORS = (GitProtocolError, HTTPUnauthorized, NotGitRepository, OSError)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class PushResult:
    ref: str
    new_sha: str
    old_sha: str | None = None   # None when the remote branch was created
    forced: bool = False

    @property
    def up_to_date(self) -> bool:
        return self.old_sha == self.new_sha


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------

def is_ssh_url(url: str) -> bool:
    """True for ``ssh://`` URLs and scp-like ``user@host:path`` locators."""
    return url.startswith(("ssh://", "git+ssh://", "ssh+git://")) or bool(_SCP_LIKE.match(url))


def has_embedded_credentials(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.username)


def is_local_path(url: str) -> bool:
    return not url.startswith(_REMOTE_SCHEMES) and not is_ssh_url(url)


def redact_url(url: str) -> str:
    """Replace any userinfo in *url* with ``***`` for log and error output."""
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https") and (parsed.username or parsed.password):
        netloc = f"***@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        return urlunparse(parsed._replace(netloc=netloc))
    return url


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def run_token_command(command: str) -> str | None:
    """Run *command* through the shell and return its stripped stdout.

    Failures are logged and produce None; they never abort the run.
    """
    try:
        proc = subprocess.run(command, shell=True, capture_output=True, text=True)
    except OSError as exc:
        logger.warning("failed to run tokenCommand: %s", exc)
        return None
    if proc.returncode != 0:
        logger.warning(
            "tokenCommand exited with status %d: %s",
            proc.returncode, proc.stderr.strip(),
        )
        return None
    return proc.stdout.strip() or None


def resolve_token(config: MirrorConfig, environ: Mapping[str, str] | None = None) -> str | None:
    """Return a push token from the environment or ``tokenCommand``.

    ``DUPLIGIT_TOKEN`` wins over ``GITHUB_TOKEN``; the command only runs
    when neither variable is set.
    """
    env = os.environ if environ is None else environ
    for var in TOKEN_ENV_VARS:
        token = (env.get(var) or "").strip()
        if token:
            logger.debug("using token from $%s", var)
            return token
    if config.token_command:
        logger.debug("running tokenCommand")
        return run_token_command(config.token_command)
    return None


def resolve_remote_url(config: MirrorConfig, environ: Mapping[str, str] | None = None) -> str:
    """Return the URL to push to, with a token injected when one applies."""
    url = config.target_repo
    if is_ssh_url(url) or has_embedded_credentials(url):
        return url
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return url
    token = resolve_token(config, environ)
    if not token:
        return url
    netloc = f"x-access-token:{quote(token, safe='')}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def ssh_command_for(key_path: str) -> str:
    """SSH command line that uses only *key_path* for this run."""
    key = os.path.expanduser(key_path)
    return (
        f"ssh -i {shlex.quote(key)} -o IdentitiesOnly=yes "
        f"-o StrictHostKeyChecking=accept-new"
    )


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

def _open_transport(url: str, ssh_command: str | None):
    kwargs = {}
    if ssh_command and is_ssh_url(url):
        # Handed to this client only; os.environ is left alone.
        kwargs["ssh_command"] = ssh_command
    return _get_transport_and_path(url, **kwargs)


def _is_ancestor(repo: MirrorRepo, ancestor: bytes, descendant: bytes) -> bool:
    if ancestor not in repo.object_store:
        return False
    for entry in repo.dulwich_repo.get_walker(include=[descendant]):
        if entry.commit.id == ancestor:
            return True
    return False


def push(
    repo: MirrorRepo,
    url: str,
    *,
    force: bool = False,
    ssh_command: str | None = None,
    progress: Callable | None = None,
) -> PushResult:
    """Push the mirror branch to the same branch name at *url*.

    Without *force* the update must be a fast-forward of the remote tip.
    A local path that does not exist yet is created as a bare repository.

    Raises:
        PublishError: Nothing to push, non-fast-forward without *force*,
            authentication or transport failure, or the remote rejected
            the ref update.
    """
    local = repo.head()
    if local is None:
        raise PublishError(f"Nothing to push: branch {repo.branch} has no commits")
    ref = repo.ref
    shown = redact_url(url)

    if is_local_path(url):
        local_path = url[7:] if url.startswith("file://") else url
        if not os.path.exists(local_path):
            try:
                Repo.init_bare(local_path, mkdir=True)
            except OSError as exc:
                raise PublishError(f"Cannot create local remote {local_path}: {exc}") from exc

    seen: dict[str, bytes | None] = {}

    def update_refs(remote_refs):
        old = remote_refs.get(ref)
        if old == ZERO_SHA:
            old = None
        seen["old"] = old
        if old is not None and old != local and not force:
            if not _is_ancestor(repo, old, local):
                raise PublishError(
                    f"Push to {shown} rejected: {repo.branch} is not a fast-forward "
                    f"of the remote branch (use force to overwrite)"
                )
        return {ref: local}

    def gen_pack(have, want, *, ofs_delta=False, progress=progress):
        return repo.object_store.generate_pack_data(
            have, want, ofs_delta=ofs_delta, progress=progress,
        )

    logger.info("pushing %s to %s%s", repo.branch, shown, " (force)" if force else "")
    try:
        client, path = _open_transport(url, ssh_command)
        result = client.send_pack(path, update_refs, gen_pack, progress=progress)
    except _TRANSPORT_ERRORS as exc:
        raise PublishError(f"Push to {shown} failed: {exc}") from exc

    ref_status = getattr(result, "ref_status", None) or {}
    error = ref_status.get(ref)
    if error:
        if isinstance(error, bytes):
            error = error.decode("utf-8", errors="replace")
        raise PublishError(f"Push to {shown} rejected: {error}")

    old = seen.get("old")
    return PushResult(
        ref=ref.decode("utf-8"),
        new_sha=local.decode("ascii"),
        old_sha=old.decode("ascii") if old is not None else None,
        forced=force and old is not None and not _is_ancestor(repo, old, local),
    )


def fetch_branch(
    repo: MirrorRepo,
    url: str,
    *,
    ssh_command: str | None = None,
    progress: Callable | None = None,
) -> bytes | None:
    """Fetch the remote tip of the mirror branch into *repo*.

    Returns the tip SHA, or None when the remote has no such branch.

    Raises:
        PublishError: The remote could not be reached or read.
    """
    ref = repo.ref

    def determine_wants(refs, depth=None, **kwargs):
        sha = refs.get(ref)
        if sha is None or sha == ZERO_SHA or sha in repo.object_store:
            return []
        return [sha]

    try:
        client, path = _open_transport(url, ssh_command)
        result = client.fetch(
            path, repo.dulwich_repo, determine_wants=determine_wants, progress=progress,
        )
    except _TRANSPORT_ERRORS as exc:
        raise PublishError(f"Fetch from {redact_url(url)} failed: {exc}") from exc
    sha = result.refs.get(ref)
    if sha is None or sha == ZERO_SHA:
        return None
    return sha
