from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click
import pyperclip

from .backend import CryptoBackend, OpenSSLSignifyBackend
from .config import (
    DEFAULT_KEY_BITS,
    DEFAULT_ROOT,
    READ_PASS_STDIN,
    READ_PASS_TTY,
    Cfg,
)
from .engine import CommandEngine
from .errors import JpmError
from .log import get_logger
from .prompt import make_prompt


def make_backend(cfg: Cfg) -> CryptoBackend:
    return OpenSSLSignifyBackend(key_bits=cfg.key_bits)


def launch_editor(cfg: Cfg):
    def edit(path: Path) -> None:
        # click.edit raises ClickException("Editing failed") on a non-zero exit
        click.edit(filename=str(path), editor=cfg.editor)
    return edit


def copy_to_clipboard(text: str) -> None:
    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as e:
        raise JpmError(f"Failed to copy to clipboard: {e}")


@click.group(no_args_is_help=False, context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--dir", "root",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    envvar="JPM_DIR",
    default=DEFAULT_ROOT,
    show_default=True,
    help="Root holding private/, store/ and tmpstore/ (env JPM_DIR).",
)
@click.option(
    "--read-pass",
    type=click.Choice([READ_PASS_TTY, READ_PASS_STDIN]),
    envvar="JPM_READ_PASS",
    default=READ_PASS_TTY,
    show_default=True,
    help="Read passphrases from the terminal or one per line from stdin (env JPM_READ_PASS).",
)
@click.option("--editor", envvar="EDITOR", default=None, help="Editor for composing entries (env EDITOR).")
@click.option(
    "--key-bits",
    type=click.IntRange(min=2048),
    envvar="JPM_KEY_BITS",
    default=DEFAULT_KEY_BITS,
    show_default=True,
    help="RSA modulus size for new encryption keys.",
)
@click.option("--verbose", "-v", is_flag=True, envvar="JPM_DEBUG", help="Debug logging on stderr.")
@click.pass_context
def cli(ctx: click.Context, root: Path, read_pass: str, editor: Optional[str], key_bits: int, verbose: bool) -> None:
    """jpm - Password Manager.

    Entries are encrypted with openssl and signed with signify, one file per
    entry under the store directory.
    """
    if verbose:
        get_logger(level=logging.DEBUG)
    cfg = Cfg(root=root.expanduser(), read_pass=read_pass, editor=editor, key_bits=key_bits, verbose=verbose)
    prompt = make_prompt(read_pass)
    ctx.obj = CommandEngine(
        cfg,
        make_backend(cfg),
        prompt,
        prompt,
        editor=launch_editor(cfg),
        clipboard=copy_to_clipboard,
    )


@cli.command("init")
@click.pass_obj
def cmd_init(engine: CommandEngine) -> None:
    """Generate the encryption and signing keys."""
    engine.init()


@cli.command("add")
@click.argument("name")
@click.pass_obj
def cmd_add(engine: CommandEngine, name: str) -> None:
    """Encrypt and sign a new entry NAME.

    Uses tmpstore/NAME if present, otherwise opens the editor on it.
    """
    engine.add(name, compose=True)


@cli.command("sign")
@click.argument("name")
@click.pass_obj
def cmd_sign(engine: CommandEngine, name: str) -> None:
    """(Re)sign entry NAME."""
    engine.sign(name)


@cli.command("verify")
@click.pass_obj
def cmd_verify(engine: CommandEngine) -> None:
    """Verify the signature of every entry."""
    engine.verify()


@cli.command("rm")
@click.argument("name")
@click.pass_obj
def cmd_rm(engine: CommandEngine, name: str) -> None:
    """Remove entry NAME and its signature."""
    engine.rm(name)


@cli.command("mv")
@click.argument("old")
@click.argument("new")
@click.option("--force", "-f", is_flag=True, help="Overwrite NEW if it exists.")
@click.pass_obj
def cmd_mv(engine: CommandEngine, old: str, new: str, force: bool) -> None:
    """Rename entry OLD to NEW."""
    engine.mv(old, new, force=force)


@cli.command("show")
@click.argument("pattern")
@click.pass_obj
def cmd_show(engine: CommandEngine, pattern: str) -> None:
    """Print the entry matching PATTERN."""
    engine.show(pattern)


@cli.command("s")
@click.argument("pattern")
@click.pass_obj
def cmd_s(engine: CommandEngine, pattern: str) -> None:
    """Like show, but print the entry name first."""
    engine.show(pattern, echo_name=True)


@cli.command("edit")
@click.argument("pattern")
@click.pass_obj
def cmd_edit(engine: CommandEngine, pattern: str) -> None:
    """Edit the entry matching PATTERN, then re-encrypt and re-sign it."""
    engine.edit(pattern)


@cli.command("ls")
@click.pass_obj
def cmd_ls(engine: CommandEngine) -> None:
    """List all entries."""
    for name in engine.ls():
        click.echo(name)


@cli.command("find")
@click.argument("pattern")
@click.option("--case-sensitive", "-c", is_flag=True, help="Do not ignore case.")
@click.pass_obj
def cmd_find(engine: CommandEngine, pattern: str, case_sensitive: bool) -> None:
    """List entries whose name matches the regular expression PATTERN."""
    for name in engine.find(pattern, ignore_case=not case_sensitive):
        click.echo(name)


@cli.command("rotate")
@click.pass_obj
def cmd_rotate(engine: CommandEngine) -> None:
    """Replace both keypairs, re-encrypting and re-signing every entry.

    Asks for the current passphrase, then the new one.
    """
    count = engine.rotate()
    click.echo(f"Rotated keys and re-sealed {count} entries.")


@cli.command("export")
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
@click.pass_obj
def cmd_export(engine: CommandEngine, directory: Path) -> None:
    """Write the decrypted content of every signed entry into DIRECTORY."""
    count = engine.export(directory)
    click.echo(f"Exported {count} entries to {directory}", err=True)


@cli.command("clip")
@click.argument("pattern")
@click.pass_obj
def cmd_clip(engine: CommandEngine, pattern: str) -> None:
    """Copy the first line of the entry matching PATTERN to the clipboard."""
    engine.clip(pattern)
