"""Gather the files the analysis tool left in a job's working directory."""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from .content_utils import extract_chapter_index, extract_title, humanize_filename

KIND_YAML = "yaml"
KIND_CHAPTER = "chapter"
KIND_TUTORIAL = "tutorial"

TIER_PLAIN = 0
TIER_REVIEWED = 1

YAML_OUTPUTS = ("step1_abstractions.yaml", "step2_relationships.yaml", "step3_order.yaml")

# (directory, kind, quality tier)
MARKDOWN_DIRS = (
    ("chapters", KIND_CHAPTER, TIER_PLAIN),
    ("reviewed-chapters", KIND_CHAPTER, TIER_REVIEWED),
    ("tutorials", KIND_TUTORIAL, TIER_PLAIN),
)


@dataclass
class ProducedFile:
    """One output file, read but not yet validated."""
    path: str
    kind: str
    title: str
    content: str
    chapter_index: int = 0
    tier: int = TIER_PLAIN
    modified_at: datetime = datetime.fromtimestamp(0, timezone.utc)

    @property
    def is_markdown(self) -> bool:
        return self.kind != KIND_YAML


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)


def collect_artifacts(working_dir: Path) -> List[ProducedFile]:
    """Read every stage output under ``working_dir``.

    Empty files are returned too; rejecting them is the upsert engine's job.
    """
    working_dir = Path(working_dir)
    produced: List[ProducedFile] = []

    for name in YAML_OUTPUTS:
        path = working_dir / name
        if path.is_file():
            produced.append(ProducedFile(
                path=str(path.relative_to(working_dir)),
                kind=KIND_YAML,
                title=path.stem,
                content=_read(path),
                modified_at=_mtime(path),
            ))

    for dirname, kind, tier in MARKDOWN_DIRS:
        directory = working_dir / dirname
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob("*.md")):
            content = _read(path)
            produced.append(ProducedFile(
                path=str(path.relative_to(working_dir)),
                kind=kind,
                title=extract_title(content, humanize_filename(path.stem)),
                content=content,
                chapter_index=extract_chapter_index(path.stem),
                tier=tier,
                modified_at=_mtime(path),
            ))

    return produced
