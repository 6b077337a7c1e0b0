"""
Optional side effects of collection creation.

- scrape_url: archive a web page (e.g. a job posting) into the collection
  with wget or curl
- git_commit: commit a new collection when system.git.auto_commit is on

Both run their tool through run_command and report failure in their result
instead of raising, so a failed download never aborts a create.
"""

import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

from markflow.contexts.collections.logger import _log_debug, _log_warning
from markflow.contexts.environment.storage import StorageAdapter
from markflow.utils.exceptions import ExternalToolError, OperationTimeoutError, ValidationError
from markflow.utils.execution import Deadline, run_command

SCRIPT_TAG_PATTERN = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
STYLE_TAG_PATTERN = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
UTF8_BOM = "\ufeff"
DEFAULT_SCRAPE_FILENAME = "job_description.html"


@dataclass
class ScrapeResult:
    success: bool
    url: str
    output_file: Optional[Path] = None
    method: str = ""
    error: Optional[str] = None


@dataclass
class GitResult:
    success: bool
    message: str = ""
    error: Optional[str] = None


def scraper_command(scraper: str, url: str, output: Path, timeout: int) -> List[str]:
    if scraper == "wget":
        return ["wget", "--quiet", f"--timeout={timeout}", "-O", str(output), url]
    if scraper == "curl":
        return [
            "curl", "--silent", "--show-error", "--location",
            "--max-time", str(timeout), "-o", str(output), url,
        ]  # fmt: skip
    raise ValidationError(f"Unsupported scraper: {scraper}")


def clean_html(html: str, cleanup: Optional[str], add_bom: bool) -> str:
    """
    Post-process downloaded HTML.

    cleanup: "scripts" strips <script> blocks, "all" also strips <style>,
    anything else leaves the page untouched.
    """
    if cleanup in ("scripts", "all"):
        html = SCRIPT_TAG_PATTERN.sub("", html)
    if cleanup == "all":
        html = STYLE_TAG_PATTERN.sub("", html)
    if add_bom and not html.startswith(UTF8_BOM):
        html = UTF8_BOM + html
    return html


def scrape_url(
    url: str,
    collection_path: Path,
    storage: StorageAdapter,
    settings: Mapping[str, Any],
    output_file: str = DEFAULT_SCRAPE_FILENAME,
    deadline: Optional[Deadline] = None,
) -> ScrapeResult:
    """
    Download a URL into the collection.

    The tool writes into a temporary directory; the cleaned page is then
    stored through the storage adapter.

    Args:
        url: Page to archive (http/https only)
        collection_path: Collection directory
        storage: Storage adapter the project lives on
        settings: Resolved `system` settings (scraper, web_download)
        output_file: File name inside the collection
    """
    if not re.match(r"^https?://", url):
        return ScrapeResult(success=False, url=url, error=f"Unsupported URL scheme: {url}")

    scraper = settings.get("scraper") or "wget"
    web_download = settings.get("web_download") or {}
    timeout = int(web_download.get("timeout") or 30)

    with tempfile.TemporaryDirectory(prefix="markflow-scrape-") as tmp:
        target = Path(tmp) / output_file
        try:
            argv = scraper_command(scraper, url, target, timeout)
            result = run_command(argv, timeout=timeout + 5, deadline=deadline)
        except (ExternalToolError, OperationTimeoutError, ValidationError) as e:
            _log_warning(f"Could not download {url}: {e.message}")
            return ScrapeResult(success=False, url=url, method=scraper, error=e.message)

        if not result.success or not target.exists():
            _log_warning(f"{scraper} failed for {url} (exit {result.returncode})")
            _log_debug(result.stderr.strip())
            return ScrapeResult(
                success=False, url=url, method=scraper, error=result.stderr.strip() or "download failed"
            )

        html = target.read_text(encoding="utf-8", errors="replace")

    cleaned = clean_html(html, web_download.get("html_cleanup"), bool(web_download.get("add_utf8_bom")))
    destination = Path(collection_path) / output_file
    storage.write_text(destination, cleaned)
    _log_debug(f"Archived {url} to {destination}")
    return ScrapeResult(success=True, url=url, output_file=destination, method=scraper)


def git_commit(
    repo_path: Path,
    paths: Sequence[Path],
    message: str,
    timeout: float = 30,
) -> GitResult:
    """
    Stage and commit paths in the repository containing repo_path.

    Returns a failed GitResult (never raises) when git is missing, the
    directory is not a repository, or the commit is rejected.
    """
    try:
        check = run_command(["git", "rev-parse", "--is-inside-work-tree"], timeout=timeout, cwd=repo_path)
        if not check.success:
            return GitResult(success=False, error="Not a git repository")

        add = run_command(["git", "add", "--", *[str(p) for p in paths]], timeout=timeout, cwd=repo_path)
        if not add.success:
            return GitResult(success=False, error=add.stderr.strip())

        commit = run_command(["git", "commit", "-m", message], timeout=timeout, cwd=repo_path)
        if not commit.success:
            return GitResult(success=False, error=commit.stderr.strip() or commit.stdout.strip())
    except (ExternalToolError, OperationTimeoutError) as e:
        return GitResult(success=False, error=e.message)

    return GitResult(success=True, message=message)
