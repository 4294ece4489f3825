from __future__ import annotations

import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence, TextIO

from .errors import BuildError, RunError

EXECUTABLE_NAME = "cli"

ProgressFn = Callable[[str], None]


@dataclass(frozen=True)
class RunResult:
    stdout: str
    stderr: str
    elapsed: float


def kphp_build(
    kphp_command: str,
    script: Path | str,
    *,
    output_dir: Path | str,
    workdir: Path | str,
    composer_root: str = "",
    include_dirs: Sequence[str] = (),
    profiling: bool = False,
) -> Path:
    args = [kphp_command, "--mode", "cli", "--destination-directory", str(output_dir)]
    if profiling:
        args.extend(["--profiler", "1"])
    if composer_root:
        args.extend(["--composer-root", composer_root])
    for include_dir in include_dirs:
        args.extend(["-I", include_dir])
    args.append(str(script))

    proc = subprocess.run(
        args,
        cwd=str(workdir),
        check=False,
        capture_output=True,
        encoding="utf-8",
        errors="replace",
    )
    if proc.returncode != 0:
        raise BuildError(f"{kphp_command}: exit status {proc.returncode}: {proc.stdout}{proc.stderr}")
    return Path(output_dir) / EXECUTABLE_NAME


def kphp_run(
    executable: Path | str,
    *,
    workdir: Path | str,
    args: Sequence[str] = (),
    profiler_prefix: str = "",
    stderr_sink: TextIO | None = None,
) -> RunResult:
    command = [str(executable), *args, "--Xkphp-options", "--disable-sql"]
    if profiler_prefix:
        command.extend(["--profiler-log-prefix", profiler_prefix])
    return _run(command, workdir=workdir, stderr_sink=stderr_sink)


def php_run(
    php_command: str,
    script: Path | str,
    *,
    workdir: Path | str,
    preload: str = "",
    jit: bool = True,
    args: Sequence[str] = (),
    stderr_sink: TextIO | None = None,
) -> RunResult:
    command = [
        php_command,
        "-f",
        str(script),
        "-d",
        "ffi.enable=preload",
        "-d",
        "opcache.enable=1",
        "-d",
        "opcache.enable_cli=1",
    ]
    if preload:
        preload_path = Path(preload)
        if not preload_path.is_absolute():
            preload_path = Path(workdir) / preload_path
        command.extend(["-d", f"opcache.preload={preload_path}"])
    if jit:
        command.extend(["-d", "opcache.jit_buffer_size=96M", "-d", "opcache.jit=on"])
    else:
        command.extend(["-d", "opcache.jit_buffer_size=0", "-d", "opcache.jit=0"])
    command.extend(args)
    return _run(command, workdir=workdir, stderr_sink=stderr_sink)


def _run(command: list[str], *, workdir: Path | str, stderr_sink: TextIO | None) -> RunResult:
    start = time.monotonic()
    proc = subprocess.Popen(
        command,
        cwd=str(workdir),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        encoding="utf-8",
        errors="replace",
    )
    stdout_lines: list[str] = []
    stderr_lines: list[str] = []
    reader = threading.Thread(target=_drain, args=(proc.stdout, stdout_lines), daemon=True)
    reader.start()
    # stderr carries benchmark samples; forward each line as soon as it arrives
    if proc.stderr is not None:
        with proc.stderr:
            for line in proc.stderr:
                stderr_lines.append(line)
                if stderr_sink is not None:
                    stderr_sink.write(line)
                    stderr_sink.flush()
    returncode = proc.wait()
    reader.join()
    elapsed = time.monotonic() - start

    stdout = "".join(stdout_lines)
    stderr = "".join(stderr_lines)
    if returncode != 0:
        raise RunError(f"{command[0]}: exit status {returncode}: {stdout}{stderr}", elapsed=elapsed)
    return RunResult(stdout=stdout, stderr=stderr, elapsed=elapsed)


def print_progress(message: str, stream: TextIO | None = None) -> None:
    out = stream or sys.stderr
    out.write(f"\033[2K\r{message}")
    out.flush()


def flush_progress(stream: TextIO | None = None) -> None:
    print_progress("", stream)


def run_with_progress(
    label: str,
    command: Sequence[str],
    *,
    interval: float = 1.0,
    progress: ProgressFn | None = None,
) -> str:
    """Run ``command`` to completion, reporting the stdout line count once per tick."""
    report = progress or print_progress
    proc = subprocess.Popen(
        list(command),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        encoding="utf-8",
        errors="replace",
    )
    stdout_lines: list[str] = []
    stderr_lines: list[str] = []
    readers = [
        threading.Thread(target=_drain, args=(proc.stdout, stdout_lines), daemon=True),
        threading.Thread(target=_drain, args=(proc.stderr, stderr_lines), daemon=True),
    ]
    for reader in readers:
        reader.start()

    completed = 0
    while True:
        try:
            returncode = proc.wait(timeout=interval)
            break
        except subprocess.TimeoutExpired:
            lines = len(stdout_lines)
            if lines != completed:
                completed = lines
                report(f"running {label} benchmarks: got {completed} samples...")
    for reader in readers:
        reader.join()

    stdout = "".join(stdout_lines)
    if returncode != 0:
        combined = "".join(stderr_lines) + stdout
        raise RunError(f"run {label} benchmarks: exit status {returncode}: {combined}")
    return stdout


def _drain(stream: TextIO | None, sink: list[str]) -> None:
    if stream is None:
        return
    with stream:
        for line in stream:
            sink.append(line)
