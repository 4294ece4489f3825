from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Callable, Mapping

KPHP_BINARY_NAME = "kphp2cpp"

ENV_VARIABLES = (
    "KPHP_ROOT",
    "KPHP_TESTS_POLYFILLS_REPO",
    "KTEST_KPHP2CPP_BINARY",
    "KTEST_DISABLE_KPHP_AUTOLOAD",
    "KTEST_INCLUDE_DIRS",
)

WhichFn = Callable[[str], "str | None"]
ExistsFn = Callable[[Path], bool]


def resolve_kphp_root(
    environ: Mapping[str, str],
    *,
    exists: ExistsFn = Path.exists,
    home: Path | None = None,
) -> Path | None:
    env_root = environ.get("KPHP_ROOT", "")
    if env_root and exists(Path(env_root)):
        return Path(env_root)
    if home is None:
        try:
            home = Path.home()
        except RuntimeError:
            return None
    home_root = home / "kphp"
    if exists(home_root):
        return home_root
    return None


def resolve_kphp_binary(
    environ: Mapping[str, str],
    *,
    which: WhichFn = shutil.which,
    exists: ExistsFn = Path.exists,
    home: Path | None = None,
) -> str | None:
    on_path = which(KPHP_BINARY_NAME)
    if on_path:
        return on_path
    root = resolve_kphp_root(environ, exists=exists, home=home)
    if root is None:
        return None
    root_binary = root / "objs" / "bin" / KPHP_BINARY_NAME
    if exists(root_binary):
        return str(root_binary)
    return None


def find_composer_root(project_root: Path | str) -> str:
    root = Path(project_root)
    if (root / "composer.json").exists():
        return str(root)
    return ""


def env_string(environ: Mapping[str, str], name: str, default: str = "") -> str:
    value = environ.get(name, "")
    return value if value else default


def env_bool(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = environ.get(name, "").strip().lower()
    if not value:
        return default
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name}: can't parse {value!r} as a boolean")


def split_include_dirs(value: str) -> tuple[str, ...]:
    return tuple(item for item in value.split(",") if item)


def describe_environment(environ: Mapping[str, str] | None = None) -> list[str]:
    env = os.environ if environ is None else environ
    return [f'{name}="{env.get(name, "")}"' for name in ENV_VARIABLES]
