from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from textwrap import wrap
from typing import Union

from rich.logging import RichHandler

from .utils import ensure_directory

DEFAULT_WRAP_WIDTH = 100
DEFAULT_LABEL_WIDTH = 20
DEFAULT_INDENT = "    "
FILE_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

FieldMapping = Union[Mapping[str, object], Sequence[tuple[str, object]]]


def _stringify(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple, set, frozenset)):
        return ", ".join(_stringify(item) for item in value)
    return str(value)


def render_fields_block(title: str, fields: FieldMapping, *, pad_top: bool = True) -> str:
    """Render a titled, aligned ``label: value`` block for multi-line log records."""
    items = list(fields.items()) if isinstance(fields, Mapping) else list(fields)
    lines: list[str] = [""] if pad_top else []
    lines.append(title)
    lines.append("-" * len(title))
    if not items:
        return "\n".join(lines).rstrip()

    label_width = max(min(max(len(str(key)) for key, _ in items), DEFAULT_LABEL_WIDTH), 8)
    value_width = max(DEFAULT_WRAP_WIDTH - len(DEFAULT_INDENT) - label_width - 4, 32)
    for key, value in items:
        wrapped = wrap(_stringify(value), width=value_width) or [""]
        lines.append(f"{DEFAULT_INDENT}{str(key):<{label_width}}: {wrapped[0]}")
        for continuation in wrapped[1:]:
            lines.append(f"{DEFAULT_INDENT}{'':<{label_width}}  {continuation}")
    return "\n".join(lines).rstrip()


def configure_logging(level: str | int = logging.INFO, *, log_file: Path | None = None) -> None:
    """Install a rich console handler, plus a plain file handler when ``log_file`` is set."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(level)

    console = RichHandler(rich_tracebacks=True, show_path=False)
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)

    if log_file is not None:
        ensure_directory(log_file.parent)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        root.addHandler(file_handler)
