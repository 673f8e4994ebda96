"""Console-script entry point; reports a missing ``cli`` extra instead of a traceback."""

import sys


def main():
    try:
        from .cli import main as cli_main
    except ImportError as exc:
        print(
            f"Error: treesync commands need click ({exc}).\n"
            "Install the command-line extra:  pip install 'treesync[cli]'",
            file=sys.stderr,
        )
        raise SystemExit(1)
    cli_main()
