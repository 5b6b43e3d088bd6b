import sys

import click

from .cli import cli


def main(argv=None) -> int:
    """Run jpm; every failure, usage errors included, exits with status 1."""
    try:
        rv = cli.main(args=argv, prog_name="jpm", standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return 1
    except click.Abort:
        click.echo("Aborted!", err=True)
        return 1
    return rv if isinstance(rv, int) else 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
