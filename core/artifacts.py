import logging
from pathlib import Path

from core.errors import CleanupError

logger = logging.getLogger(__name__)


def ensure_temp_dir(path: Path) -> Path:
    """Creates the shared temp directory. Concurrent creation is fine."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_usable_artifact(path: Path) -> bool:
    """An artifact is usable when it exists and is non-empty."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def remove_artifact(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        raise CleanupError(f"Failed to delete artifact {path}: {e}") from e
    logger.debug(f"Deleted: {path}")
