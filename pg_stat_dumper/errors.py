from __future__ import annotations


class TaskError(RuntimeError):
    task = "task"

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        self.exit_code = exit_code
        super().__init__(message)

    @property
    def status(self) -> int:
        if self.exit_code is None or self.exit_code == 0:
            return 1
        return self.exit_code


class ImageBuildError(TaskError):
    task = "warm"


class ContainerRunError(TaskError):
    task = "build"


class ConfigError(ValueError):
    pass
