"""Runtime configuration read from environment variables.

Resolution order for every setting: explicit argument, then environment
variable, then the built-in default.

    RECORDKIT_DB_URL         full SQLAlchemy URL (e.g. sqlite:///data/record.db)
    RECORDKIT_DB_PATH        path to the SQLite file when no URL is given
    RECORDKIT_OE_FEED        spreadsheet/CSV with the authoritative O.E. numbers
    RECORDKIT_DRAWINGS_ROOT  root folder scanned for drawing PDFs
"""

import os
from pathlib import Path
from typing import Optional

DEFAULT_DB_PATH = "data/record.db"


def resolve_db_url(db_url: Optional[str] = None, db_path: Optional[str] = None) -> str:
    """Work out the database URL from arguments and environment."""
    if db_url:
        return db_url
    if os.getenv("RECORDKIT_DB_URL"):
        return os.getenv("RECORDKIT_DB_URL")

    path = db_path or os.getenv("RECORDKIT_DB_PATH") or DEFAULT_DB_PATH
    if path == ":memory:":
        return "sqlite://"
    return f"sqlite:///{Path(path)}"


def sqlite_file_from_url(db_url: str) -> Optional[Path]:
    """Return the database file for a file-backed SQLite URL, else None."""
    if not db_url.startswith("sqlite"):
        return None
    _, _, path = db_url.partition(":///")
    if not path or path == ":memory:":
        return None
    return Path(path)


def oe_feed_path() -> Optional[str]:
    return os.getenv("RECORDKIT_OE_FEED") or None


def drawings_root() -> Optional[str]:
    return os.getenv("RECORDKIT_DRAWINGS_ROOT") or None
