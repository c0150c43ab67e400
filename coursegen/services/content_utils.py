"""Content processing utilities: repository identity, title slugs, markdown cleanup."""

import hashlib
import re
from urllib.parse import urlsplit, urlunsplit

# Number of hex chars used from the SHA-256 of a normalized repository URL.
# 12 hex chars = 48 bits, ample for the number of repositories one deployment sees.
REPOSITORY_ID_LENGTH = 12
DOC_ID_KEY_HASH_LENGTH = 12

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_FENCE = re.compile(r"^\s*```", re.MULTILINE)


def normalize_repo_url(repo_url: str) -> str:
    """Canonical form of a repository URL.

    Lower-cases scheme and host, drops credentials, a trailing slash and a
    ``.git`` suffix, so ``https://GitHub.com/foo/bar.git/`` and
    ``https://github.com/foo/bar`` identify the same repository.
    Shorthand ``owner/name`` is expanded to a github.com URL.
    """
    url = repo_url.strip()
    if re.fullmatch(r"[\w.-]+/[\w.-]+", url):
        url = f"https://github.com/{url}"
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if parts.port:
        host = f"{host}:{parts.port}"
    path = parts.path.rstrip("/")
    if path.endswith(".git"):
        path = path[:-4]
    return urlunsplit((parts.scheme.lower(), host, path, "", ""))


def repository_id(repo_url: str) -> str:
    """Stable short identifier for a repository."""
    return hashlib.sha256(normalize_repo_url(repo_url).encode()).hexdigest()[:REPOSITORY_ID_LENGTH]


def normalize_slug(title: str) -> str:
    """Lower-case, trim, and collapse whitespace and punctuation runs to single dashes.

    "Chapter 1: Getting Started" and " chapter 1 - getting  started!" both
    become ``chapter-1-getting-started``.
    """
    return _NON_ALNUM.sub("-", title.strip().lower()).strip("-")


def derive_source_key(repo_id: str, kind: str, title: str) -> str:
    """Dedup identity of a generated document within a repository."""
    return f"{repo_id}:{kind}:{normalize_slug(title)}"


def humanize_filename(stem: str) -> str:
    """``02_data-model`` -> ``02 data model``."""
    return re.sub(r"[_\-]+", " ", stem).strip()


def extract_title(content: str, fallback: str) -> str:
    """First level-1 markdown heading, else ``fallback``."""
    for line in content.splitlines():
        match = re.match(r"^#\s+(.+?)\s*#*\s*$", line)
        if match:
            return match.group(1).strip()
    return fallback


def extract_chapter_index(stem: str) -> int:
    """Leading number of a file name (``03_api`` -> 3), 0 if none."""
    match = re.match(r"^\D*?(\d+)", stem)
    return int(match.group(1)) if match else 0


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def is_blank(content: str) -> bool:
    return not content or not content.strip()


def normalize_markdown(content: str) -> str:
    """Normalize generated markdown before comparing or storing it.

    - LF line endings
    - a dangling (odd) code fence is closed
    - exactly one trailing newline
    - a blank line before every heading
    - no runs of more than one blank line
    """
    if not content:
        return content

    normalized = content.replace("\r\n", "\n").replace("\r", "\n")

    if len(_FENCE.findall(normalized)) % 2 != 0:
        normalized = normalized.rstrip("\n") + "\n```\n"

    normalized = re.sub(r"\n(#{1,6}\s)", r"\n\n\1", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    normalized = normalized.rstrip("\n") + "\n"

    return normalized


def generate_doc_id(repo_id: str, source_key: str) -> str:
    """Stable document ID for a source key."""
    key_hash = hashlib.sha256(source_key.encode()).hexdigest()[:DOC_ID_KEY_HASH_LENGTH]
    return f"doc-{repo_id}-{key_hash}"
