from __future__ import annotations

import os
import stat
import sys
import textwrap
from dataclasses import replace
from pathlib import Path

import pytest
from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_SRC = (_PROJECT_ROOT / "src").resolve()
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

# Load .env from project root so TMPLRIG_DOTNET_PATH etc. apply to e2e runs
load_dotenv(_PROJECT_ROOT / ".env", override=False)

# Resolve a relative TMPLRIG_OUTPUT_BASE against project root
_output_base = os.environ.get("TMPLRIG_OUTPUT_BASE", "")
if _output_base and not os.path.isabs(_output_base):
    os.environ["TMPLRIG_OUTPUT_BASE"] = str((_PROJECT_ROOT / _output_base).resolve())

from tmplrig.config import HarnessConfig  # noqa: E402


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script standing in for an external tool."""
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def config(tmp_path) -> HarnessConfig:
    tracking = tmp_path / "tracking"
    tracking.mkdir()
    return HarnessConfig(
        custom_hive_path=tmp_path / "hive",
        output_base_path=tmp_path / "projects",
        package_dir=tmp_path / "packages",
        tracking_dir=tracking,
        delete_interval=0.0,
        http_interval=0.05,
        driver_interval=0.1,
        startup_timeout=10.0,
    )


@pytest.fixture
def make_script(tmp_path):
    def make(name: str, body: str) -> Path:
        return write_script(tmp_path / name, body)

    return make


# Stand-in for the dotnet muxer: ``new`` (install/uninstall/list/generate),
# ``build``, ``publish``, migrations, and ``dotnet <app>.dll`` which serves HTTP.
FAKE_DOTNET = r'''
import http.server
import json
import os
import pathlib
import sys
import time

args = sys.argv[1:]
log = os.environ.get("FAKE_DOTNET_LOG")

EMPTY_MIGRATION = """    public partial class Initial : Migration
    {
        protected override void Up(MigrationBuilder migrationBuilder)
        {

        }

        protected override void Down(MigrationBuilder migrationBuilder)
        {

        }
    }
"""


def option(name):
    if name not in args:
        return None
    index = len(args) - 1 - args[::-1].index(name)
    return args[index + 1]


def env_list(name):
    return [v for v in os.environ.get(name, "").split(",") if v]


def record(event):
    if log:
        with open(log, "a") as f:
            f.write(f"{event} {time.monotonic()} {' '.join(args[:2])}\n")


def serve():
    ok_paths = env_list("FAKE_APP_OK") or ["/"]

    class Handler(http.server.BaseHTTPRequestHandler):
        def do_GET(self):
            body = b"<html><head><title>app</title></head></html>"
            self.send_response(200 if self.path in ok_paths else 404)
            self.send_header("Content-Type", "text/html")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *a):
            pass

    server = http.server.HTTPServer(("127.0.0.1", 0), Handler)
    print("Hosting environment: " + os.environ.get("ASPNETCORE_ENVIRONMENT", "Production"), flush=True)
    print("Content root path: " + os.getcwd(), flush=True)
    print("Now listening on: https://127.0.0.1:1", flush=True)
    print(f"Now listening on: http://127.0.0.1:{server.server_port}", flush=True)
    server.serve_forever()


def new(rest, hive):
    state = pathlib.Path(hive) / "installed.json"
    installed = json.loads(state.read_text()) if state.exists() else []

    if "--uninstall" in rest:
        print(f"Could not find something to uninstall called '{option('--uninstall')}'.", file=sys.stderr)
        return 1
    if "--install" in rest:
        state.parent.mkdir(parents=True, exist_ok=True)
        installed.append(option("--install"))
        state.write_text(json.dumps(installed))
        return 0

    template = rest[0] if rest and not rest[0].startswith("-") else None
    if template is None:
        missing = env_list("FAKE_MISSING_TEMPLATES")
        print("Templates                Short Name     Language    Tags")
        if installed:
            for name in ("console", "web", "webapp", "mvc", "react", "webapi"):
                if name not in missing:
                    print(f"Template {name:<14} {name} [C#] Web")
        return 0

    if not installed and template not in env_list("FAKE_STALE_TEMPLATES"):
        print(f"No templates matched the input template name: {template}.", file=sys.stderr)
        return 14
    if not installed:
        print(f"Usage: new {template} [options]")
        return 0

    out = pathlib.Path(option("-o"))
    out.mkdir(parents=True, exist_ok=True)
    project = out.name
    extension = "fsproj" if option("-lang") == "F#" else "csproj"
    references = []
    if option("--auth") == "Individual" and "--use-local-db" not in args:
        references.append("app.db")
    (out / f"{project}.{extension}").write_text("<Project>" + " ".join(references) + "</Project>")
    files = env_list("FAKE_NEW_FILES") or ["Program.cs", "Startup.cs", "appsettings.json"]
    for name in files:
        path = out / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("// generated")
    (out / "obj").mkdir(exist_ok=True)
    (out / "obj" / "project.assets.json").write_text("{}")
    print(f"The template \"{template}\" was created successfully.")
    return 0


def main():
    framework = os.environ.get("FAKE_FRAMEWORK", "netcoreapp3.0")
    project = pathlib.Path.cwd().name
    if "migrations" in args:
        folder = pathlib.Path("Data/Migrations")
        folder.mkdir(parents=True, exist_ok=True)
        body = os.environ.get("FAKE_MIGRATION_BODY", EMPTY_MIGRATION)
        (folder / f"20190101000000_{args[-1]}.cs").write_text(body)
        return 0
    command = args[0] if args else ""
    if command in ("build", "publish"):
        if command == "build":
            out = pathlib.Path("bin/Debug") / framework
        else:
            out = pathlib.Path("bin/Release") / framework / "publish"
        out.mkdir(parents=True, exist_ok=True)
        (out / f"{project}.dll").write_text("")
        print(f"{command} succeeded.")
        return int(os.environ.get(f"FAKE_{command.upper()}_EXIT", "0"))
    if command == "new":
        return new(args[1:], option("--debug:custom-hive"))
    print(f"Unknown command: {args}", file=sys.stderr)
    return 1


if args and args[0].endswith(".dll") and "migrations" not in args:
    if os.environ.get("FAKE_APP_CRASH"):
        print("Unhandled exception. Address already in use", file=sys.stderr)
        sys.exit(3)
    serve()

record("start")
time.sleep(float(os.environ.get("FAKE_DOTNET_DELAY", "0")))
try:
    code = main()
finally:
    record("end")
sys.exit(code)
'''

BUILT_PACKAGES = [
    "Microsoft.DotNet.Web.Client.ItemTemplates.3.0.0-dev.nupkg",
    "Microsoft.DotNet.Web.ItemTemplates.3.0.0-dev.nupkg",
    "Microsoft.DotNet.Web.ProjectTemplates.3.0.3.0.0-dev.nupkg",
    "Microsoft.DotNet.Web.Spa.ProjectTemplates.3.0.3.0.0-dev.nupkg",
]


@pytest.fixture
def fake_config(config, make_script) -> HarnessConfig:
    """Config whose generator is the fake dotnet script, with built packages in place."""
    script = make_script("dotnet", FAKE_DOTNET)
    package_dir = Path(config.package_dir)
    package_dir.mkdir(parents=True, exist_ok=True)
    for name in BUILT_PACKAGES:
        (package_dir / name).write_text("")
    # Not a template package; must not be counted
    (package_dir / "Microsoft.AspNetCore.App.Runtime.3.0.0-dev.nupkg").write_text("")
    return replace(config, dotnet_path=str(script), ef_tool_path="/tools/dotnet-ef.dll")
