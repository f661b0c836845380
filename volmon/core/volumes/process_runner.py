"""Single-shot wrapper around an external command.

One ProcessRunner owns at most one in-flight command. Concurrent commands
need separate runners; the interrogation engine creates one per request.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple

from volmon.core.asyncio_utils import create_logged_task
from volmon.core.errors import ValidationError
from volmon.core.logging_utils import LoggerLike, ensure_structured_logger


@dataclass(frozen=True)
class ProcessResult:
    """Terminal outcome of one command.

    ``output`` holds stdout when ``valid`` and the captured stderr (or the
    launch error) otherwise. The exit status is informational only.
    """
    valid: bool
    output: str
    token: Any
    runner: "ProcessRunner"
    returncode: Optional[int] = None


CompletionCallback = Callable[[ProcessResult], None]


def _validate_strings(name: str, values: Any) -> Tuple[str, ...]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise ValidationError(f"'{name}' must be a sequence of strings")
    for value in values:
        if not isinstance(value, str):
            raise ValidationError(f"'{name}' must contain only strings")
    return tuple(values)


class ProcessRunner:

    def __init__(
        self,
        on_complete: Optional[CompletionCallback] = None,
        *,
        encoding: str = "utf-8",
        logger: LoggerLike = None,
    ) -> None:
        self.on_complete = on_complete
        self.encoding = encoding
        self.logger = ensure_structured_logger(logger, fallback_name="ProcessRunner")

        self._command: Optional[str] = None
        self._arguments: Tuple[str, ...] = ()
        self._options: Tuple[str, ...] = ()
        self._token: Any = None
        self._pending = False
        self._result: Optional[ProcessResult] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_pending(self) -> bool:
        return self._pending

    @property
    def command(self) -> Optional[str]:
        return self._command

    @property
    def arguments(self) -> Tuple[str, ...]:
        return self._arguments

    @property
    def options(self) -> Tuple[str, ...]:
        return self._options

    @property
    def token(self) -> Any:
        return self._token

    @property
    def result(self) -> Optional[ProcessResult]:
        return self._result

    def describe(self) -> str:
        return " ".join((self._command or "<none>",) + self._arguments)

    def run(
        self,
        command: str,
        arguments: Sequence[str] = (),
        options: Sequence[str] = (),
        token: Any = None,
    ) -> asyncio.Task:
        """Spawn ``command`` and return the task that reports its completion.

        ``options`` are ``NAME=value`` environment overrides for the child.

        Raises:
            RuntimeError: a command is already pending on this runner.
            ValidationError: the request is malformed.
        """
        if self._pending:
            raise RuntimeError(f"Command already in progress: {self.describe()}")

        if not isinstance(command, str) or not command:
            raise ValidationError("'command' must be a non-empty string")
        arguments = _validate_strings("arguments", arguments)
        options = _validate_strings("options", options)
        for option in options:
            name, sep, _ = option.partition("=")
            if not sep or not name:
                raise ValidationError(f"Option {option!r} must have the form NAME=value")

        self._command = command
        self._arguments = arguments
        self._options = options
        self._token = token
        self._result = None
        self._pending = True

        self._task = create_logged_task(
            self._execute(),
            logger=self.logger,
            context=f"ProcessRunner[{command}]",
        )
        return self._task

    def _build_env(self) -> dict:
        env = os.environ.copy()
        for option in self._options:
            name, _, value = option.partition("=")
            env[name] = value
        return env

    async def _execute(self) -> ProcessResult:
        stdout_text = ""
        error_text = ""
        error_encountered = False
        returncode: Optional[int] = None

        try:
            process = await asyncio.create_subprocess_exec(
                self._command,
                *self._arguments,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(),
            )
        except OSError as exc:
            self.logger.debug("Launch failed for '%s': %s", self.describe(), exc)
            error_encountered = True
            error_text = str(exc)
        else:
            stdout, stderr = await process.communicate()
            returncode = process.returncode
            stdout_text = stdout.decode(self.encoding, errors="replace")
            if stderr:
                error_encountered = True
                error_text = stderr.decode(self.encoding, errors="replace")
            self.logger.debug("'%s' exited with code %s", self.describe(), returncode)

        self._pending = False
        result = ProcessResult(
            valid=not error_encountered,
            output=error_text if error_encountered else stdout_text,
            token=self._token,
            runner=self,
            returncode=returncode,
        )
        self._result = result

        if self.on_complete is not None:
            try:
                self.on_complete(result)
            except Exception:
                self.logger.exception("Completion callback failed for '%s'", self.describe())

        return result


__all__ = ["CompletionCallback", "ProcessResult", "ProcessRunner"]
