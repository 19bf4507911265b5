from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from types import TracebackType

logger = logging.getLogger(__name__)


class Workspace:
    """Scope-bound scratch directory for extracted frames and sliced segments.

    The directory is created on ``__enter__`` and removed on every exit path,
    including ``KeyboardInterrupt`` and collaborator failures.
    """

    def __init__(self, root: str | Path | None = None, prefix: str = "killclip_") -> None:
        self._root = Path(root).expanduser() if root is not None else None
        self._prefix = prefix
        self._path: Path | None = None

    @property
    def path(self) -> Path:
        if self._path is None:
            raise RuntimeError("Workspace is not active; use it as a context manager.")
        return self._path

    def subdir(self, name: str) -> Path:
        target = self.path / name
        target.mkdir(parents=True, exist_ok=True)
        return target

    def __enter__(self) -> Workspace:
        if self._root is not None:
            self._root.mkdir(parents=True, exist_ok=True)
        self._path = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._root))
        logger.debug("Created workspace %s", self._path)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        if self._path is None:
            return
        path, self._path = self._path, None
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Failed to remove workspace %s: %s", path, exc)
            return
        logger.debug("Removed workspace %s", path)
