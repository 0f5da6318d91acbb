"""
TagCache - Credential File Loader

Reads an optional ``credential.txt`` made of ``key=value`` lines::

    username=admin
    password=s3cret

The loader is a plain function over an explicit list of candidate paths.
Nothing is memoized; callers pass the result into ``load_config``.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

CREDENTIAL_FILENAME = "credential.txt"


@dataclass(frozen=True)
class Credentials:
    """Result of a credential file lookup. Empty fields mean "not provided"."""

    username: str | None = None
    password: str | None = None
    source: Path | None = None

    @property
    def found(self) -> bool:
        return self.source is not None


def default_search_paths(cwd: Path | None = None) -> list[Path]:
    """
    Candidate credential file locations, in priority order.

    The working directory comes first, then the directories above the
    installed package (covers running from a source checkout).
    """
    base = cwd or Path.cwd()
    package_dir = Path(__file__).resolve().parent.parent
    candidates = [base / CREDENTIAL_FILENAME]
    candidates.extend(parent / CREDENTIAL_FILENAME for parent in package_dir.parents[:3])

    # Drop duplicates while keeping order
    seen: set[Path] = set()
    unique: list[Path] = []
    for path in candidates:
        if path not in seen:
            seen.add(path)
            unique.append(path)
    return unique


def load_credentials(search_paths: Iterable[str | Path] | None = None) -> Credentials:
    """
    Load username/password from the first existing credential file.

    Args:
        search_paths: Candidate files in priority order (defaults to
            default_search_paths())

    Returns:
        Credentials; all fields None when no file is found. Never raises for
        a missing or unreadable file.
    """
    paths = [Path(p) for p in search_paths] if search_paths is not None else default_search_paths()

    for path in paths:
        if not path.is_file():
            continue
        try:
            values = dotenv_values(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(
                f"Failed to read credential file {path}: {e}",
                extra={"path": str(path), "error": str(e)},
            )
            continue

        logger.debug("Loaded credentials from %s", path, extra={"path": str(path)})
        return Credentials(
            username=(values.get("username") or None),
            password=(values.get("password") or None),
            source=path,
        )

    logger.debug("No credential file found", extra={"candidates": [str(p) for p in paths]})
    return Credentials()
