from __future__ import annotations

import json
import typing

import click

PREFIX = "irsactl: "

_verbosity = 0


def set_verbosity(level: int) -> None:
    global _verbosity  # noqa: PLW0603
    _verbosity = level


def verbosity() -> int:
    return _verbosity


def info(msg: str) -> None:
    click.secho(f"{PREFIX}{msg}")


def success(msg: str) -> None:
    click.secho(f"{PREFIX}{msg}", fg="green")


def warning(msg: str) -> None:
    click.secho(f"{PREFIX}{msg}", fg="yellow", err=True)


def error(msg: str) -> None:
    click.secho(f"{PREFIX}{msg}", fg="red", bold=True, err=True)


def debug(msg: str) -> None:
    if _verbosity < 1:
        return

    click.secho(f"{PREFIX}{msg}", dim=True, err=True)


def debug_json(label: str, obj: typing.Any) -> None:
    if _verbosity < 1:
        return

    debug(f"{label} = \\\n{json.dumps(obj, indent=2, sort_keys=True)}")


def print_steps(steps: list[str]) -> None:
    click.secho(
        "∙ " + ("\n∙ ".join(steps)) + "\n",
        fg="white",
        bold=True,
    )
