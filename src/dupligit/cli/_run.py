"""run and check commands."""

from __future__ import annotations

import click

from ._helpers import (
    main,
    _config_options,
    _load,
    _progress_cb,
    _status,
)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

@main.command("run")
@_config_options
@click.option("--force", "-f", is_flag=True, default=False,
              help="Force push, overwriting the target branch.")
@click.option("--dry-run", is_flag=True, default=False,
              help="Build the mirror locally but do not push.")
@click.option("--source", type=click.Path(file_okay=False, exists=True), default=".",
              show_default=True, help="Path inside the source repository.")
@click.option("--workdir", type=click.Path(), default=None,
              help="Empty or new directory for the mirror working copy "
                   "(default: a temporary directory).")
@click.pass_context
def run_cmd(ctx, config_opt, config_arg, force, dry_run, source, workdir):
    """Mirror the source repository to the configured target.

    With "preserveHistory" every first-parent commit is replayed with its
    original author and date; otherwise one sanitized snapshot commit is
    added on top of the target branch.
    """
    from ..engine import run
    from ..exceptions import DupligitError

    config = _load(config_opt, config_arg)

    def _on_commit(i, total, commit):
        _status(ctx, f"[{i}/{total}] {commit.short_id} {commit.message.splitlines()[0] if commit.message else ''}")

    try:
        result = run(
            config,
            source=source,
            workdir=workdir,
            force=force,
            dry_run=dry_run,
            progress=_on_commit,
            transfer_progress=_progress_cb(ctx),
        )
    except DupligitError as exc:
        raise click.ClickException(str(exc))
    except OSError as exc:
        raise click.ClickException(str(exc))

    if result.replay is not None:
        _status(ctx, f"Replayed {len(result.replay)} commit(s), {result.replay.empty} empty")
    if dry_run:
        _status(ctx, f"Dry run: mirror left in {result.workdir}")


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------

@main.command("check")
@_config_options
@click.pass_context
def check_cmd(ctx, config_opt, config_arg):
    """Validate the config file and compile its rules."""
    from ..exceptions import DupligitError
    from ..replay import RuleSet

    config = _load(config_opt, config_arg)
    try:
        RuleSet.from_config(config)
    except DupligitError as exc:
        raise click.ClickException(str(exc))
    _status(
        ctx,
        f"Config OK: {len(config.rules)} rule(s), {len(config.ignore)} ignore pattern(s), "
        f"target {config.target_branch}",
    )
