"""Shared helpers, option decorators, and the main CLI group."""

from __future__ import annotations

import logging
import sys

import click

from ..config import MirrorConfig, default_config_path, load_config
from ..exceptions import DupligitError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


def _setup_logging(verbose: bool) -> None:
    """Route the library's log records to stderr, never stdout."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("[dupligit] %(message)s"))
    logger = logging.getLogger("dupligit")
    logger.handlers[:] = [handler]
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False


def _progress_cb(ctx):
    """Return a transfer progress callback if verbose mode is on, else None."""
    if not ctx.obj.get("verbose"):
        return None
    def _on_progress(msg):
        text = msg.decode(errors="replace") if isinstance(msg, bytes) else msg
        text = text.replace("\r", "\r\033[K")
        click.echo(text, nl=False, err=True)
    return _on_progress


def _config_path(config_opt: str | None, config_arg: str | None) -> str:
    """--config wins over the positional path, then $DUPLIGIT_CONFIG."""
    return config_opt or config_arg or default_config_path()


def _load(config_opt: str | None, config_arg: str | None) -> MirrorConfig:
    try:
        return load_config(_config_path(config_opt, config_arg))
    except DupligitError as exc:
        raise click.ClickException(str(exc))


def _config_options(f):
    """Shared positional CONFIG argument and --config/-c option."""
    f = click.argument("config_arg", metavar="[CONFIG]", required=False,
                       type=click.Path(dir_okay=False))(f)
    f = click.option("--config", "-c", "config_opt", type=click.Path(dir_okay=False),
                     help="Path to config JSON (default: $DUPLIGIT_CONFIG "
                          "or dupligit.config.json).")(f)
    return f


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose output on stderr.")
@click.pass_context
def main(ctx, verbose):
    """dupligit: sanitize and mirror a git repository.

    Copies the repository you run it in to another remote, rewriting file
    contents and commit messages with regex rules and leaving out ignored
    files.

    \b
    Quick start:
      dupligit check                 Validate dupligit.config.json
      dupligit run                   Mirror and push
      dupligit run --dry-run -v      Build the mirror locally only

    \b
    Environment:
      DUPLIGIT_CONFIG  Path to config JSON (alternative to --config)
      DUPLIGIT_TOKEN   Token with push rights to the target repo
      GITHUB_TOKEN     Fallback token name (e.g. in GitHub Actions)
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)
