from __future__ import annotations

import logging
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


def safe_unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not delete temporary file %s: %s", path, exc)


class TempFileScope:
    """
    Tracks intermediate files created during one transcription attempt.

    Every path handed out by `new_path` (or passed to `register`) is deleted
    when the scope closes, whether the attempt succeeded or raised.
    """

    def __init__(self, tmp_dir: Optional[Path] = None, prefix: str = "scribe"):
        self._tmp_dir = Path(tmp_dir) if tmp_dir is not None else Path(tempfile.gettempdir())
        self._prefix = prefix
        self._paths: List[Path] = []

    @property
    def paths(self) -> List[Path]:
        return list(self._paths)

    def new_path(self, suffix: str = ".wav") -> Path:
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        path = self._tmp_dir / f"{self._prefix}_{uuid.uuid4().hex}{suffix}"
        self._paths.append(path)
        return path

    def register(self, path: Path) -> Path:
        self._paths.append(Path(path))
        return path

    def cleanup(self) -> None:
        for path in self._paths:
            safe_unlink(path)
        self._paths = []

    def __enter__(self) -> "TempFileScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
