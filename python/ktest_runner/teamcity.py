from __future__ import annotations

from typing import TextIO

NAME_PREFIX = "Benchmark"


def _strip(name: str) -> str:
    name = name.lstrip("\\")
    return name[len(NAME_PREFIX) :] if name.startswith(NAME_PREFIX) else name


class TeamcityLogger:
    """Writes TeamCity service messages; a logger without a stream is silent."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    def _emit(self, message: str) -> None:
        if self.stream is None:
            return
        self.stream.write(f"##teamcity[{message}]\n")
        self.stream.flush()

    def suite_started(self, name: str) -> None:
        self._emit(f"testSuiteStarted name='{_strip(name)}'")

    def suite_finished(self, name: str, duration_seconds: float) -> None:
        self._emit(f"testSuiteFinished name='{_strip(name)}' duration='{int(duration_seconds * 1000)}'")
