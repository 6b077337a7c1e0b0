"""Integration tests for URL archiving and git auto-commit on create."""

import os
import shutil

import pytest

from conftest import requires_sh, write_tool
from markflow.contexts.collections import WorkflowEngine
from markflow.contexts.collections.integrations import clean_html, git_commit, scrape_url, scraper_command
from markflow.contexts.environment.storage import MemoryStorage
from markflow.utils.exceptions import ValidationError
from markflow.utils.execution import run_command

pytestmark = pytest.mark.integration

GOOGLE = {"company": "Google Inc", "role": "Software Engineer"}
POSTING_URL = "https://example.com/jobs/42"

# Writes a small page to the -O target
FAKE_WGET = """\
output=""
while [ $# -gt 0 ]; do
  if [ "$1" = "-O" ]; then shift; output="$1"; fi
  shift
done
printf '<html><script>track()</script><body>Senior role</body></html>' > "$output"
"""

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def fake_wget(tmp_path, monkeypatch):
    bin_dir = tmp_path / "wget-bin"
    write_tool(bin_dir, "wget", FAKE_WGET)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir


def test_scraper_commands():
    assert scraper_command("wget", POSTING_URL, "/tmp/out.html", 30)[:3] == ["wget", "--quiet", "--timeout=30"]
    assert "--max-time" in scraper_command("curl", POSTING_URL, "/tmp/out.html", 30)
    with pytest.raises(ValidationError):
        scraper_command("lynx", POSTING_URL, "/tmp/out.html", 30)


def test_clean_html():
    page = "<style>p {}</style><script src='x.js'></script><p>Hi</p>"

    assert clean_html(page, "scripts", add_bom=False) == "<style>p {}</style><p>Hi</p>"
    assert clean_html(page, "all", add_bom=True) == "\ufeff<p>Hi</p>"
    assert clean_html(page, "none", add_bom=False) == page


def test_scrape_rejects_non_http_urls():
    result = scrape_url("file:///etc/passwd", "/c", MemoryStorage(), {})

    assert not result.success
    assert "Unsupported URL scheme" in result.error


@requires_sh
def test_scrape_into_memory_storage(fake_wget):
    storage = MemoryStorage()
    settings = {"scraper": "wget", "web_download": {"timeout": 5, "html_cleanup": "scripts", "add_utf8_bom": True}}

    result = scrape_url(POSTING_URL, "/project/job/active/c1", storage, settings)

    assert result.success, result.error
    html = storage.read_text("/project/job/active/c1/job_description.html")
    assert html == "\ufeff<html><body>Senior role</body></html>"


@requires_sh
def test_create_with_url_archives_posting(fake_wget, disk_project):
    engine = WorkflowEngine.from_cwd(disk_project)

    collection = engine.create("job", GOOGLE, url=POSTING_URL)

    assert collection.metadata.extra["url"] == POSTING_URL
    assert "Senior role" in (collection.path / "job_description.html").read_text(encoding="utf-8")


@requires_sh
def test_failed_download_does_not_abort_create(tmp_path, monkeypatch, disk_project):
    bin_dir = tmp_path / "broken-bin"
    write_tool(bin_dir, "wget", "echo 'wget: unable to resolve host' >&2\nexit 4\n")
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    engine = WorkflowEngine.from_cwd(disk_project)

    collection = engine.create("job", GOOGLE, url=POSTING_URL)

    assert (collection.path / "resume_test_user.md").is_file()
    assert not (collection.path / "job_description.html").exists()


@requires_git
def test_git_commit_outside_repository(tmp_path):
    result = git_commit(tmp_path, [tmp_path], "message")

    assert not result.success
    assert result.error == "Not a git repository"


@requires_git
def test_auto_commit_on_create(disk_project, monkeypatch):
    for variable in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(variable, "Test User")
    for variable in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(variable, "test@example.com")
    assert run_command(["git", "init", "--quiet"], cwd=disk_project).success
    engine = WorkflowEngine.from_cwd(disk_project, overrides=["system.git.auto_commit=true"])

    collection = engine.create("job", GOOGLE)

    log = run_command(["git", "log", "--format=%s"], cwd=disk_project)
    assert log.stdout.strip() == f"Add job collection: {collection.collection_id}"
