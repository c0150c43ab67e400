"""Repository checkout for the analysis tool."""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Protocol
from urllib.parse import urlsplit, urlunsplit

from ..core.logging_config import redact
from ..exceptions import RepositoryFetchError
from .content_utils import normalize_repo_url

logger = logging.getLogger(__name__)


class RepositoryFetcher(Protocol):
    def fetch(self, repo_url: str, branch: str, destination: Path) -> Path:
        ...


class GitRepositoryFetcher:
    """Shallow ``git clone`` of one branch, reused if the checkout already exists."""

    def __init__(self, timeout: float = 300, token: str = ""):
        self.timeout = timeout
        self.token = token

    def clone_url(self, repo_url: str) -> str:
        """HTTPS URL with the access token embedded, if one is configured."""
        url = normalize_repo_url(repo_url)
        parts = urlsplit(url)
        if not self.token or parts.scheme != "https":
            return url
        return urlunsplit((parts.scheme, f"x-access-token:{self.token}@{parts.netloc}", parts.path, "", ""))

    def fetch(self, repo_url: str, branch: str, destination: Path) -> Path:
        destination = Path(destination)
        if (destination / ".git").is_dir():
            logger.info("Reusing existing checkout of %s at %s", repo_url, destination)
            return destination

        if destination.exists():
            shutil.rmtree(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Cloning %s (branch %s)", repo_url, branch)
        try:
            subprocess.run(
                ["git", "clone", "--depth", "1", "--branch", branch, self.clone_url(repo_url), str(destination)],
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except subprocess.CalledProcessError as e:
            shutil.rmtree(destination, ignore_errors=True)
            raise RepositoryFetchError(repo_url, redact((e.stderr or "").strip()[-500:]) or f"git exited {e.returncode}") from e
        except subprocess.TimeoutExpired as e:
            shutil.rmtree(destination, ignore_errors=True)
            raise RepositoryFetchError(repo_url, f"git clone timed out after {self.timeout:.0f}s") from e
        except OSError as e:
            raise RepositoryFetchError(repo_url, f"could not run git: {e}") from e

        return destination
