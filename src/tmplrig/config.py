"""Configuration for the template test harness."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

DEFAULT_TEMPLATE_PACKAGES = [
    "Microsoft.DotNet.Common.ItemTemplates",
    "Microsoft.DotNet.Common.ProjectTemplates.2.1",
    "Microsoft.DotNet.Test.ProjectTemplates.2.1",
    "Microsoft.DotNet.Web.Client.ItemTemplates",
    "Microsoft.DotNet.Web.ItemTemplates",
    "Microsoft.DotNet.Web.ProjectTemplates.1.x",
    "Microsoft.DotNet.Web.ProjectTemplates.2.0",
    "Microsoft.DotNet.Web.ProjectTemplates.2.1",
    "Microsoft.DotNet.Web.ProjectTemplates.2.2",
    "Microsoft.DotNet.Web.ProjectTemplates.3.0",
    "Microsoft.DotNet.Web.Spa.ProjectTemplates",
    "Microsoft.DotNet.Web.Spa.ProjectTemplates.2.2",
    "Microsoft.DotNet.Web.Spa.ProjectTemplates.3.0",
]

DEFAULT_DRIVER_COMMAND = "npx playwright run-server --port {port} --host 127.0.0.1"

ENV_PREFIX = "TMPLRIG_"


def _default_root() -> Path:
    return Path(tempfile.gettempdir()) / "tmplrig"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def _split_list(value: str) -> list[str]:
    return [part.strip() for part in value.replace(";", ",").split(",") if part.strip()]


@dataclass
class HarnessConfig:
    """Everything the harness needs to know about the machine it runs on."""
    dotnet_path: str = "dotnet"
    custom_hive_path: Path = field(default_factory=lambda: _default_root() / "hive")
    output_base_path: Path = field(default_factory=lambda: _default_root() / "projects")
    package_dir: Path = field(default_factory=lambda: Path("artifacts") / "packages")
    expected_package_count: int = 4
    template_packages: list[str] = field(default_factory=lambda: list(DEFAULT_TEMPLATE_PACKAGES))
    templates_absent_after_uninstall: list[str] = field(
        default_factory=lambda: ["web", "webapp", "mvc", "react", "reactredux", "angular"]
    )
    templates_present_after_install: list[str] = field(
        default_factory=lambda: ["webapp", "web", "react"]
    )
    ef_tool_path: Optional[str] = None
    target_framework: str = "netcoreapp3.0"
    project_name_prefix: str = "AspNet.Template"
    tracking_dir: Path = field(default_factory=lambda: _default_root() / "tracking")
    driver_command: str = DEFAULT_DRIVER_COMMAND
    driver_health_path: str = "/"
    driver_attempts: int = 30
    driver_interval: float = 1.0
    npm_command: str = "npm install"
    restore_attempts: int = 3
    delete_attempts: int = 10
    delete_interval: float = 3.0
    http_attempts: int = 10
    http_interval: float = 0.5
    startup_timeout: float = 30.0
    ignored_suffixes: list[str] = field(
        default_factory=lambda: [".csproj", ".fsproj", ".props", ".targets"]
    )
    ignored_prefixes: list[str] = field(default_factory=lambda: ["bin/", "obj/"])
    log_dir: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HarnessConfig":
        """Create configuration from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in (data or {}).items():
            if key not in known or value is None:
                continue
            if key in {"custom_hive_path", "output_base_path", "package_dir", "tracking_dir", "log_dir"}:
                value = Path(value)
            kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Path) -> "HarnessConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    def with_env(self, env: Optional[dict[str, str]] = None) -> "HarnessConfig":
        """Return a copy with ``TMPLRIG_*`` environment overrides applied."""
        src = env if env is not None else os.environ
        overrides: dict[str, Any] = {}

        def get(name: str) -> Optional[str]:
            return _clean(src.get(ENV_PREFIX + name))

        if get("DOTNET_PATH"):
            overrides["dotnet_path"] = get("DOTNET_PATH")
        if get("CUSTOM_HIVE"):
            overrides["custom_hive_path"] = Path(get("CUSTOM_HIVE"))
        if get("OUTPUT_BASE"):
            overrides["output_base_path"] = Path(get("OUTPUT_BASE"))
        if get("PACKAGE_DIR"):
            overrides["package_dir"] = Path(get("PACKAGE_DIR"))
        if get("EXPECTED_PACKAGE_COUNT"):
            overrides["expected_package_count"] = int(get("EXPECTED_PACKAGE_COUNT"))
        if get("TEMPLATE_PACKAGES"):
            overrides["template_packages"] = _split_list(get("TEMPLATE_PACKAGES"))
        if get("EF_TOOL_PATH"):
            overrides["ef_tool_path"] = get("EF_TOOL_PATH")
        if get("TARGET_FRAMEWORK"):
            overrides["target_framework"] = get("TARGET_FRAMEWORK")
        if get("TRACKING_DIR"):
            overrides["tracking_dir"] = Path(get("TRACKING_DIR"))
        if get("DRIVER_COMMAND"):
            overrides["driver_command"] = get("DRIVER_COMMAND")
        if get("NPM_COMMAND"):
            overrides["npm_command"] = get("NPM_COMMAND")
        if get("LOG_DIR"):
            overrides["log_dir"] = Path(get("LOG_DIR"))
        return replace(self, **overrides) if overrides else self

    @classmethod
    def from_env(cls, env: Optional[dict[str, str]] = None) -> "HarnessConfig":
        return cls().with_env(env)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a plain dictionary."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Path):
                value = str(value)
            elif isinstance(value, list):
                value = list(value)
            out[f.name] = value
        return out

    def to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def load_config(path: Optional[str | Path] = None, env: Optional[dict[str, str]] = None) -> HarnessConfig:
    """Load configuration from an optional YAML file, then apply the environment.

    Without an explicit path, ``TMPLRIG_CONFIG`` is consulted.
    """
    src = env if env is not None else os.environ
    if path is None:
        path = _clean(src.get(ENV_PREFIX + "CONFIG"))
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        config = HarnessConfig.from_yaml(path)
    else:
        config = HarnessConfig()
    return config.with_env(src)
