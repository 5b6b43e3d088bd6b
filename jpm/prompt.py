"""Where passphrases and disambiguation choices come from."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import IO, Optional, Union

import click

from .config import READ_PASS_STDIN, READ_PASS_TTY
from .errors import JpmError


class PassphraseSource(ABC):
    @abstractmethod
    def passphrase(self, prompt: str, confirm: bool = False) -> str:
        ...


class ChoiceSource(ABC):
    @abstractmethod
    def choice(self, prompt: str) -> str:
        """Raw answer; an empty string means cancel."""
        ...


class TtyPrompt(PassphraseSource, ChoiceSource):
    """Interactive prompts; prompts go to stderr so stdout stays pipeable."""

    def passphrase(self, prompt: str, confirm: bool = False) -> str:
        return click.prompt(prompt, hide_input=True, confirmation_prompt=confirm, err=True)

    def choice(self, prompt: str) -> str:
        return click.prompt(prompt, default="", show_default=False, err=True)


class StdinPrompt(PassphraseSource, ChoiceSource):
    """
    One answer per line of standard input, no echo handling, no confirmation.

    Passphrases and choices share the same stream, in the order the command
    asks for them.
    """

    def __init__(self, stream: Optional[IO[str]] = None):
        self._stream = stream

    @property
    def stream(self) -> IO[str]:
        if self._stream is None:
            self._stream = click.get_text_stream("stdin")
        return self._stream

    def _line(self) -> Optional[str]:
        line = self.stream.readline()
        if not line:
            return None
        return line.rstrip("\r\n")

    def passphrase(self, prompt: str, confirm: bool = False) -> str:
        line = self._line()
        if line is None:
            raise JpmError(f"{prompt}: no passphrase on standard input")
        return line

    def choice(self, prompt: str) -> str:
        line = self._line()
        return "" if line is None else line


def make_prompt(mode: str) -> Union[TtyPrompt, StdinPrompt]:
    if mode == READ_PASS_STDIN:
        return StdinPrompt()
    if mode == READ_PASS_TTY:
        return TtyPrompt()
    raise click.BadParameter(f"unknown passphrase source {mode!r}", param_hint="--read-pass")
