"""Indexing drawing files from a folder tree into ``drawing_file``."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Sequence

from .store.client import DatabaseClient

logger = logging.getLogger(__name__)

DRAWING_EXTENSIONS = (".pdf",)

# Paths longer than this are rejected by the serving layer
MAX_PATH_LENGTH = 500


@dataclass
class IndexStats:
    scanned: int = 0
    inserted: int = 0
    existing: int = 0
    rejected: int = 0


def iter_drawing_files(root: Path, extensions: Sequence[str] = DRAWING_EXTENSIONS) -> Iterator[Dict[str, str]]:
    """Yield file_name / file_path / last_modified_at for every drawing under ``root``."""
    root = root.resolve()
    wanted = {ext.lower() for ext in extensions}
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in wanted:
            continue
        try:
            modified = datetime.fromtimestamp(path.stat().st_mtime).isoformat(timespec="seconds")
        except OSError as e:
            logger.warning(f"Cannot stat {path}: {e}")
            continue
        yield {
            "file_name": path.name,
            "file_path": str(path),
            "last_modified_at": modified,
        }


def index_drawing_files(
    db: DatabaseClient,
    root: str,
    extensions: Sequence[str] = DRAWING_EXTENSIONS
) -> IndexStats:
    """
    Insert drawing_file rows for files not indexed yet.

    Existing rows (same file_path) are left untouched; ``part_id`` is filled
    in later by the location matcher.

    Raises:
        FileNotFoundError: If ``root`` is not a directory
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise FileNotFoundError(f"Drawing folder not found: {root}")

    stats = IndexStats()
    for entry in iter_drawing_files(root_path, extensions):
        stats.scanned += 1
        if len(entry["file_path"]) > MAX_PATH_LENGTH:
            stats.rejected += 1
            logger.warning(f"Path too long, skipped: {entry['file_path'][:80]}...")
            continue
        exists = db.fetch_value(
            "SELECT 1 FROM drawing_file WHERE file_path = :path", {"path": entry["file_path"]}
        )
        if exists:
            stats.existing += 1
            continue
        db.insert("drawing_file", entry)
        stats.inserted += 1

    logger.info(
        f"Indexed {root}: {stats.scanned} files, {stats.inserted} new, "
        f"{stats.existing} already known, {stats.rejected} rejected"
    )
    return stats
