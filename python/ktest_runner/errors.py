from __future__ import annotations


class KtestError(Exception):
    pass


class PipelineError(KtestError):
    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"{step}: {cause}")
        self.step = step
        self.cause = cause


class BuildError(KtestError):
    pass


class RunError(KtestError):
    def __init__(self, message: str, *, elapsed: float = 0.0) -> None:
        super().__init__(message)
        self.elapsed = elapsed


class PhpParseError(KtestError):
    def __init__(self, filename: str, diagnostics: list[str]) -> None:
        detail = "; ".join(diagnostics) if diagnostics else "syntax error"
        super().__init__(f"{filename}: parse error: {detail}")
        self.filename = filename
        self.diagnostics = diagnostics


class EventStreamError(KtestError):
    pass


class OutputMismatchError(KtestError):
    pass
