"""
CLI Output

Table and JSON rendering of results for the command line.
"""

import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

import click


def print_error(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)


def print_success(message: str) -> None:
    click.secho(message, fg="green")


def print_info(message: str) -> None:
    click.echo(message)


def _plain(value: Any) -> Any:
    """Convert results into JSON-friendly structures."""
    if is_dataclass(value) and not isinstance(value, type):
        return _plain(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    return value


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, list):
        return ", ".join(_cell(v) for v in value) if value else "-"
    if isinstance(value, dict):
        return ", ".join(f"{k}={_cell(v)}" for k, v in value.items()) if value else "-"
    return str(value)


class OutputFormatter:
    """Renders results as an aligned key/value table or as JSON."""

    def __init__(self, format: str = "table", quiet: bool = False):
        self.format = format
        self.quiet = quiet

    def output(self, data: Any) -> None:
        plain = _plain(data)
        if self.format == "json":
            click.echo(json.dumps(plain, indent=2, ensure_ascii=False, default=str))
            return

        if isinstance(plain, list):
            for index, item in enumerate(plain):
                if index:
                    click.echo("")
                self._table(item)
        else:
            self._table(plain)

    def _table(self, data: Any) -> None:
        if not isinstance(data, dict):
            click.echo(_cell(data))
            return
        if not data:
            return
        width = max(len(str(k)) for k in data)
        for key, value in data.items():
            click.echo(f"{str(key).ljust(width)} : {_cell(value)}")

    def success(self, message: str) -> None:
        if self.format == "json":
            click.echo(json.dumps({"success": True, "message": message}))
        elif not self.quiet:
            print_success(message)

    def info(self, message: str) -> None:
        if not self.quiet and self.format != "json":
            print_info(message)
