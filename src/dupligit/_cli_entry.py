"""Console-script entry point for ``dupligit``.

click ships in the optional ``cli`` extra; without it the command prints
an install hint instead of a traceback.
"""

import sys

INSTALL_HINT = (
    "dupligit: the command-line interface needs click, which is not installed.\n"
    "Install the extra with:  pip install 'dupligit[cli]'"
)


def main(argv=None):
    try:
        from .cli import main as cli_main
    except ModuleNotFoundError as exc:
        # Only a missing click is expected; anything else is a real bug.
        if exc.name != "click":
            raise
        print(INSTALL_HINT, file=sys.stderr)
        raise SystemExit(1)
    cli_main(args=argv, prog_name="dupligit")
