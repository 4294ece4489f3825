from __future__ import annotations

import difflib
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import BuildError, OutputMismatchError, RunError
from .kenv import find_composer_root
from .process import kphp_build, kphp_run, php_run
from .workspace import remove_workspace


@dataclass(frozen=True)
class CompareConfig:
    script: Path
    workdir: Path
    project_root: Path
    kphp_command: str
    php_command: str = "php"
    preload: str = ""


def stdout_diff(php_stdout: str, kphp_stdout: str) -> str:
    diff = difflib.unified_diff(
        php_stdout.splitlines(keepends=True),
        kphp_stdout.splitlines(keepends=True),
        fromfile="PHP",
        tofile="KPHP",
    )
    return "".join(diff)


def compare_script(config: CompareConfig) -> None:
    """Run a script under PHP and KPHP; raise OutputMismatchError when stdout differs."""
    try:
        php_result = php_run(
            config.php_command,
            config.script,
            workdir=config.workdir,
            preload=config.preload,
        )
    except RunError as exc:
        raise RunError(f"run php: {exc}") from exc

    build_dir = Path(tempfile.mkdtemp(prefix="kphpcompare-build"))
    try:
        try:
            executable = kphp_build(
                config.kphp_command,
                config.script,
                output_dir=build_dir,
                workdir=config.workdir,
                composer_root=find_composer_root(config.project_root),
            )
        except BuildError as exc:
            raise BuildError(f"build kphp: {exc}") from exc
        try:
            kphp_result = kphp_run(executable, workdir=config.workdir)
        except RunError as exc:
            raise RunError(f"run kphp: {exc}") from exc
    finally:
        remove_workspace(build_dir)

    diff = stdout_diff(php_result.stdout, kphp_result.stdout)
    if diff:
        raise OutputMismatchError(f"stdout differs (-PHP +KPHP):\n{diff}")
