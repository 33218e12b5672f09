"""Expected file sets for generated templates.

The baseline manifest maps template name to auth option to the generator
arguments and the exact list of files those arguments must produce::

    {"webapi": {"": {"Arguments": "new webapi -o .", "Files": ["Program.cs", ...]}}}
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .config import HarnessConfig

DEFAULT_BASELINE_FILE = Path(__file__).parent / "data" / "template-baselines.json"

_TEMPLATE_RE = re.compile(r"new (?P<template>[a-zA-Z]+)")
_AUTH_RE = re.compile(r"-au (?P<auth>[a-zA-Z]+)")
_LANGUAGE_RE = re.compile(r"--language (?P<language>[\w#]+)")


@dataclass(frozen=True)
class TemplateBaseline:
    template: str
    auth_option: str
    arguments: str
    files: tuple[str, ...]

    @property
    def key(self) -> str:
        return sanitize_args(self.arguments)

    @property
    def test_id(self) -> str:
        return f"{self.template}-{self.auth_option or 'default'}"


@dataclass(frozen=True)
class IgnoreRules:
    """Paths left out of the exact-file-set comparison (build outputs, project metadata)."""
    suffixes: tuple[str, ...] = (".csproj", ".fsproj", ".props", ".targets")
    prefixes: tuple[str, ...] = ("bin/", "obj/")

    @classmethod
    def from_config(cls, config: HarnessConfig) -> "IgnoreRules":
        return cls(suffixes=tuple(config.ignored_suffixes), prefixes=tuple(config.ignored_prefixes))

    def ignores(self, relative_path: str) -> bool:
        return relative_path.endswith(self.suffixes) or relative_path.startswith(self.prefixes)


DEFAULT_IGNORE = IgnoreRules()


@dataclass
class FileSetMismatch:
    missing: list[str] = field(default_factory=list)
    unexpected: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.missing or self.unexpected)

    def describe(self) -> str:
        lines = []
        if self.missing:
            lines.append("Missing files:")
            lines.extend(f"  {p}" for p in self.missing)
        if self.unexpected:
            lines.append("Unexpected files:")
            lines.extend(f"  {p}" for p in self.unexpected)
        return "\n".join(lines)


def load_baselines(path: Optional[str | Path] = None) -> list[TemplateBaseline]:
    """Read the manifest, keeping the file's template and option order."""
    path = Path(path) if path else DEFAULT_BASELINE_FILE
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    baselines: list[TemplateBaseline] = []
    for template, options in data.items():
        for auth_option, entry in options.items():
            baselines.append(
                TemplateBaseline(
                    template=template,
                    auth_option=auth_option,
                    arguments=entry["Arguments"],
                    files=tuple(entry["Files"]),
                )
            )
    return baselines


def find_baseline(
    template: str,
    auth_option: str = "",
    baselines: Optional[Iterable[TemplateBaseline]] = None,
) -> TemplateBaseline:
    for baseline in baselines if baselines is not None else load_baselines():
        if baseline.template == template and baseline.auth_option == auth_option:
            return baseline
    raise KeyError(f"No baseline for template {template!r} with auth option {auth_option!r}")


def sanitize_args(arguments: str) -> str:
    """Turn generator arguments into a project cache key.

    ``new mvc -au Individual --uld --language F#`` becomes ``mvcIndividualuldFSharp``.
    """
    text = ""
    match = _TEMPLATE_RE.search(arguments)
    if match:
        text += match.group("template")
    match = _AUTH_RE.search(arguments)
    if match:
        text += match.group("auth")
    if "--uld" in arguments:
        text += "uld"
    match = _LANGUAGE_RE.search(arguments)
    if match:
        text += match.group("language").replace("#", "Sharp")
    return text


def list_files(output_dir: str | Path) -> list[str]:
    """All files under ``output_dir`` as sorted ``/``-separated relative paths."""
    root = Path(output_dir)
    found = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            found.append((Path(dirpath) / name).relative_to(root).as_posix())
    return sorted(found)


def compare_file_set(
    output_dir: str | Path,
    expected_files: Iterable[str],
    ignore: IgnoreRules = DEFAULT_IGNORE,
) -> FileSetMismatch:
    root = Path(output_dir)
    expected = list(expected_files)
    expected_set = set(expected)
    mismatch = FileSetMismatch()
    mismatch.missing = [f for f in expected if not (root / f).is_file()]
    mismatch.unexpected = [
        f for f in list_files(root) if not ignore.ignores(f) and f not in expected_set
    ]
    return mismatch


def verify_file_set(
    output_dir: str | Path,
    expected_files: Iterable[str],
    ignore: IgnoreRules = DEFAULT_IGNORE,
) -> None:
    """Assert the directory holds exactly ``expected_files`` (modulo ``ignore``)."""
    mismatch = compare_file_set(output_dir, expected_files, ignore)
    if mismatch:
        raise AssertionError(f"Generated files in {output_dir} don't match the baseline.\n{mismatch.describe()}")
