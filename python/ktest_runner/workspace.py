from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)

DEFAULT_LINKS = ("vendor", "composer.json", "ffilibs")


def prepare_workspace(
    prefix: str,
    project_root: Path | str,
    *,
    links: Sequence[str] = DEFAULT_LINKS,
    make_dirs: Sequence[str] = (),
) -> Path:
    """Create a fresh temp dir with project artifacts symlinked in.

    Links whose source is missing under ``project_root`` are skipped.
    """
    workspace = Path(tempfile.mkdtemp(prefix=prefix))
    root = Path(project_root)
    try:
        for name in dict.fromkeys(links):
            if not name or Path(name).is_absolute():
                continue
            source = root / name
            if not source.exists():
                continue
            target = workspace / name
            target.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(source, target)
        for name in make_dirs:
            (workspace / name).mkdir(parents=True, exist_ok=True)
    except OSError:
        shutil.rmtree(workspace, ignore_errors=True)
        raise
    return workspace


def remove_workspace(workspace: Path | None) -> None:
    if workspace is None or workspace == Path("/"):
        return
    try:
        shutil.rmtree(workspace)
    except OSError as exc:
        logger.warning("remove temp build dir: %s", exc)


def write_file(path: Path, contents: str | bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(contents, bytes):
        path.write_bytes(contents)
    else:
        path.write_text(contents, encoding="utf-8")
