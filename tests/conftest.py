"""Shared fixtures: in-memory and on-disk projects with a frozen clock."""

import os
import stat
from pathlib import Path

import pytest

import markflow
from markflow.contexts.collections import WorkflowEngine
from markflow.contexts.environment.storage import MemoryStorage

BUNDLED_SYSTEM = Path(markflow.__file__).resolve().parent / "system"

MEMORY_SYSTEM_ROOT = Path("/system")
MEMORY_PROJECT_ROOT = Path("/project")

FIXED_DATE = "2025-07-30T10:00:00+00:00"

TESTING_CONFIG = """\
user:
  name: "Test User"
  preferred_name: "test_user"
  email: "test@example.com"

system:
  testing:
    override_current_date: "2025-07-30T10:00:00Z"
    override_timezone: "UTC"
    deterministic_ids: true
"""

requires_sh = pytest.mark.skipif(not Path("/bin/sh").exists(), reason="needs /bin/sh for fake tools")


def seed_system(storage: MemoryStorage, root: Path = MEMORY_SYSTEM_ROOT) -> None:
    """Copy the bundled system installation into memory storage."""
    for path in BUNDLED_SYSTEM.rglob("*"):
        if path.is_file():
            storage.write_bytes(root / path.relative_to(BUNDLED_SYSTEM), path.read_bytes())


def write_tool(bin_dir: Path, name: str, script: str) -> Path:
    """Write an executable shell script standing in for an external tool."""
    bin_dir.mkdir(parents=True, exist_ok=True)
    tool = bin_dir / name
    tool.write_text("#!/bin/sh\n" + script)
    tool.chmod(tool.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return tool


# Copies its input to the -o target and records its arguments next to itself
FAKE_PANDOC = """\
if [ "$1" = "--version" ]; then echo "pandoc 3.1"; exit 0; fi
echo "$@" > "$(dirname "$0")/pandoc.args"
input="$1"
output=""
while [ $# -gt 0 ]; do
  if [ "$1" = "-o" ]; then shift; output="$1"; fi
  shift
done
cp "$input" "$output"
"""

# Copies the diagram source to the --output target
FAKE_MMDC = """\
for arg in "$@"; do
  case "$arg" in
    --version) echo "10.9.0"; exit 0;;
    --input=*) input="${arg#--input=}";;
    --output=*) output="${arg#--output=}";;
  esac
done
cp "$input" "$output"
"""


@pytest.fixture
def fake_tools(tmp_path, monkeypatch):
    """Put fake pandoc and mmdc first on PATH; returns the bin directory."""
    bin_dir = tmp_path / "bin"
    write_tool(bin_dir, "pandoc", FAKE_PANDOC)
    write_tool(bin_dir, "mmdc", FAKE_MMDC)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir


@pytest.fixture
def memory_storage(monkeypatch):
    """Memory storage holding the system installation and an initialized project."""
    storage = MemoryStorage()
    seed_system(storage)
    storage.mkdir(MEMORY_PROJECT_ROOT / ".markflow" / "workflows")
    storage.write_text(MEMORY_PROJECT_ROOT / ".markflow" / "config.yml", TESTING_CONFIG)
    monkeypatch.setenv("MARKFLOW_SYSTEM_ROOT", str(MEMORY_SYSTEM_ROOT))
    return storage


@pytest.fixture
def engine(memory_storage):
    return WorkflowEngine.from_cwd(MEMORY_PROJECT_ROOT, storage=memory_storage)


@pytest.fixture
def disk_project(tmp_path, monkeypatch):
    """Initialized project on the real filesystem using the bundled system."""
    from markflow.contexts.configuration import initialize_project

    monkeypatch.delenv("MARKFLOW_SYSTEM_ROOT", raising=False)
    project_root = tmp_path / "project"
    project_root.mkdir()
    result = initialize_project(project_root)
    result.config_file.write_text(TESTING_CONFIG)
    return project_root
