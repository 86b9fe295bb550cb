"""Asynchronous supervision of external command-line tools.

ProcessExecutor launches a binary with captured output and races three
events: natural exit, a caller-owned cancellation event and an optional
timeout. Whichever fires first decides the outcome, and the child process
is killed (with its whole process group on POSIX, or its descendant tree
elsewhere) on every path that does not end in a natural exit.

Example:
    executor = ProcessExecutor({"transcoder": "/usr/bin/ffmpeg"})
    cancel = asyncio.Event()

    result = await executor.execute(
        "transcoder",
        f"-i {sanitize_for_shell(url)} -c copy {sanitize_for_shell(out)}",
        cancel_event=cancel,
        timeout=600,
    )
"""
import asyncio
import logging
import os
import shlex
import shutil
import signal
import threading
import time
import uuid
from typing import Dict, List, Mapping, Optional

import psutil

from .exceptions import (
    InvalidInvocationError,
    ToolCancelledError,
    ToolFailureError,
    ToolTimeoutError,
)
from .types import ExecutionOutcome, OutcomeKind, ProcessResult

logger = logging.getLogger(__name__)

# Logical tool names understood by the path table
EXTRACTOR = "extractor"
TRANSCODER = "transcoder"

# Seconds to wait for stream readers after killing a process
DEFAULT_KILL_GRACE = 5.0

# Children get their own session and are killed as a group where the OS supports it
USE_PROCESS_GROUPS = os.name == "posix"


def kill_process_tree(pid: int) -> int:
    """Kill a process and every descendant it has started.

    Used where process groups are unavailable. Descendants are collected
    before the parent is killed so orphans are still found.

    Returns:
        Number of processes killed

    Raises:
        ProcessLookupError: If the parent no longer exists
    """
    try:
        parent = psutil.Process(pid)
        children = parent.children(recursive=True)
        parent.kill()
    except psutil.NoSuchProcess as e:
        raise ProcessLookupError(pid) from e
    except psutil.Error as e:
        raise OSError(f"Could not kill process {pid}: {e}") from e

    killed = 1
    for child in children:
        try:
            child.kill()
            killed += 1
        except psutil.NoSuchProcess:
            pass
        except psutil.Error as e:
            logger.error(f"Could not kill child process {child.pid}: {e}")
    return killed


class ProcessExecutor:
    """Runs external tools with bounded lifetime and captured output.

    An instance is safe to share between concurrent callers. The only
    shared mutable state is the logical-name-to-path table, which is
    replaced wholesale on update so every invocation works from the
    snapshot it read when it started.
    """

    def __init__(
        self,
        tool_paths: Optional[Mapping[str, str]] = None,
        env: Optional[Mapping[str, str]] = None,
        kill_grace: float = DEFAULT_KILL_GRACE,
    ):
        """Initialize the executor.

        Args:
            tool_paths: Initial logical-name-to-path mapping
                (e.g. {"transcoder": "/usr/bin/ffmpeg"})
            env: Extra environment variables for every child process
            kill_grace: Seconds to wait for output readers after a kill
        """
        self._paths_lock = threading.Lock()
        self._tool_paths: Dict[str, str] = {}
        for name, path in (tool_paths or {}).items():
            self._validate_mapping(name, path)
            self._tool_paths[name] = path
        self._extra_env = dict(env or {})
        self._kill_grace = kill_grace

    # ------------------------------------------------------------------
    # Path table
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_mapping(name: str, path: str) -> None:
        if not name or not isinstance(name, str) or not name.strip():
            raise InvalidInvocationError("Tool name cannot be null or empty")
        if not path or not isinstance(path, str) or not path.strip():
            raise InvalidInvocationError(
                f"Path for tool '{name}' cannot be null or empty",
                executable=name,
            )

    def update_tool_path(self, name: str, path: str) -> None:
        """Point a logical tool name at a new executable.

        Invocations already in flight keep the path they started with.

        Raises:
            InvalidInvocationError: If name or path is empty
        """
        self._validate_mapping(name, path)
        with self._paths_lock:
            updated = dict(self._tool_paths)
            updated[name] = path
            self._tool_paths = updated
        logger.info(f"Tool path updated: {name} -> {path}")

    def get_tool_path(self, name: str) -> Optional[str]:
        """Return the configured path for a logical tool name, if any."""
        return self._snapshot().get(name)

    @property
    def tool_paths(self) -> Dict[str, str]:
        """Copy of the current path table."""
        return dict(self._snapshot())

    def _snapshot(self) -> Dict[str, str]:
        with self._paths_lock:
            return self._tool_paths

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_executable(executable: str, paths: Mapping[str, str]) -> str:
        """Turn a logical name, command name or path into an executable path.

        Raises:
            InvalidInvocationError: If nothing executable can be found
        """
        if not executable or not isinstance(executable, str) or not executable.strip():
            raise InvalidInvocationError("Executable cannot be null or empty")

        candidate = paths.get(executable, executable)

        if os.path.dirname(candidate):
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate
            raise InvalidInvocationError(
                f"Executable not found: {candidate}",
                executable=executable,
            )

        found = shutil.which(candidate)
        if not found:
            raise InvalidInvocationError(
                f"Executable not found on PATH: {candidate}",
                executable=executable,
            )
        return found

    @staticmethod
    def _split_arguments(arguments: str, executable: str) -> List[str]:
        """Split one argument string into argv using POSIX shell rules.

        Raises:
            InvalidInvocationError: If the string is not a str or its quoting is broken
        """
        if arguments is None:
            return []
        if not isinstance(arguments, str):
            raise InvalidInvocationError(
                f"Arguments must be a single string (got {type(arguments).__name__})",
                executable=executable,
            )
        try:
            return shlex.split(arguments, posix=True)
        except ValueError as e:
            raise InvalidInvocationError(
                f"Malformed argument string: {e}",
                executable=executable,
            ) from e

    def _build_env(self, paths: Mapping[str, str]) -> Dict[str, str]:
        env = dict(os.environ)
        transcoder = paths.get(TRANSCODER)
        if transcoder:
            # The extractor looks here for its post-processing binary
            env["FFMPEG_LOCATION"] = transcoder
        env.update(self._extra_env)
        return env

    async def execute(
        self,
        executable: str,
        arguments: str = "",
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
        check: bool = False,
        correlation_id: Optional[str] = None,
    ) -> ProcessResult:
        """Run a tool to completion, cancellation or timeout.

        Args:
            executable: Logical tool name, command name or path
            arguments: One argument string; every untrusted value in it must
                already have gone through sanitize_for_shell()
            cancel_event: Setting this kills the process and raises
                ToolCancelledError. Setting it after exit is a no-op.
            timeout: Seconds before the process is killed, or None
            check: Raise ToolFailureError on a non-zero exit code
            correlation_id: Trace id for log lines (generated if omitted)

        Returns:
            ProcessResult with exit code, captured output and duration

        Raises:
            InvalidInvocationError: Bad executable, argument string or timeout
            ToolTimeoutError: The timeout elapsed first
            ToolCancelledError: The cancel event fired first
            ToolFailureError: Non-zero exit and ``check`` is set
        """
        correlation_id = correlation_id or str(uuid.uuid4())[:8]
        paths = self._snapshot()
        resolved = self._resolve_executable(executable, paths)
        argv = self._split_arguments(arguments, executable)
        tool_name = os.path.basename(resolved)

        if timeout is not None and timeout <= 0:
            raise InvalidInvocationError(
                f"Timeout must be positive (got: {timeout})",
                correlation_id=correlation_id,
                executable=executable,
            )

        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"[{correlation_id}] {tool_name} not started: already cancelled")
            raise ToolCancelledError(
                f"{tool_name} cancelled before launch",
                correlation_id=correlation_id,
                executable=resolved,
            )

        logger.debug(f"[{correlation_id}] Running: {resolved} {arguments}")
        started = time.monotonic()
        status = "failed"

        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    resolved,
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=self._build_env(paths),
                    start_new_session=USE_PROCESS_GROUPS,
                )
            except (OSError, ValueError) as e:
                raise InvalidInvocationError(
                    f"Failed to start process '{tool_name}': {e}",
                    correlation_id=correlation_id,
                    executable=resolved,
                ) from e

            logger.info(f"[{correlation_id}] Started {tool_name} (pid {process.pid})")

            try:
                stdout, stderr = await self._supervise(
                    process, cancel_event, timeout, correlation_id, resolved
                )
            except ToolTimeoutError:
                status = f"timed out after {timeout}s"
                raise
            except ToolCancelledError:
                status = "cancelled"
                raise
            except asyncio.CancelledError:
                status = "abandoned by caller"
                raise

            result = ProcessResult(
                exit_code=process.returncode,
                stdout=stdout,
                stderr=stderr,
                duration=time.monotonic() - started,
            )
            status = f"exited with code {result.exit_code}"
        finally:
            elapsed = time.monotonic() - started
            logger.info(f"[{correlation_id}] {tool_name} {status} in {elapsed:.3f}s")

        if check and not result.success:
            raise ToolFailureError(
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                message=f"{tool_name} failed with exit code {result.exit_code}",
                correlation_id=correlation_id,
            )

        return result

    async def _supervise(
        self,
        process: asyncio.subprocess.Process,
        cancel_event: Optional[asyncio.Event],
        timeout: Optional[float],
        correlation_id: str,
        executable: str,
    ):
        """Wait for exit, cancellation or timeout and return decoded output."""
        communicate_task = asyncio.ensure_future(process.communicate())
        waiters = {communicate_task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if cancel_event is not None and cancel_event.is_set():
                await self._terminate(process, communicate_task, correlation_id)
                raise ToolCancelledError(
                    "Process cancelled by caller",
                    correlation_id=correlation_id,
                    executable=executable,
                )

            if communicate_task not in done:
                await self._terminate(process, communicate_task, correlation_id)
                raise ToolTimeoutError(
                    timeout=timeout,
                    correlation_id=correlation_id,
                    executable=executable,
                )

            stdout, stderr = communicate_task.result()
            return self._decode(stdout), self._decode(stderr)

        except asyncio.CancelledError:
            await self._terminate(process, communicate_task, correlation_id)
            raise

        finally:
            pending = [task for task in (communicate_task, cancel_task) if task and not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def _terminate(
        self,
        process: asyncio.subprocess.Process,
        communicate_task: asyncio.Future,
        correlation_id: str,
    ) -> None:
        """Kill a process (tree) and let its output readers finish.

        Kill failures are logged and swallowed: the OS process may leak but
        the executor's own resources are still released.
        """
        if process.returncode is None:
            try:
                if USE_PROCESS_GROUPS:
                    os.killpg(process.pid, signal.SIGKILL)
                else:
                    kill_process_tree(process.pid)
                logger.warning(f"[{correlation_id}] Killed process {process.pid}")
            except ProcessLookupError:
                # Already exited
                pass
            except OSError as e:
                logger.error(f"[{correlation_id}] Could not kill process group {process.pid}: {e}")
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                except OSError as kill_error:
                    logger.error(f"[{correlation_id}] Could not kill process {process.pid}: {kill_error}")

        try:
            await asyncio.wait_for(asyncio.shield(communicate_task), timeout=self._kill_grace)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{correlation_id}] Output readers still open {self._kill_grace}s after kill; abandoning them"
            )
            communicate_task.cancel()
        except Exception as e:
            logger.error(f"[{correlation_id}] Error draining process output: {e}")

    @staticmethod
    def _decode(data: Optional[bytes]) -> str:
        if not data:
            return ""
        return data.decode("utf-8", errors="replace")

    async def run(
        self,
        executable: str,
        arguments: str = "",
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
        correlation_id: Optional[str] = None,
    ) -> ExecutionOutcome:
        """Like execute(), but report every outcome as a tagged value.

        Only asyncio.CancelledError (the awaiting task itself being
        cancelled) still propagates as an exception.

        Example:
            outcome = await executor.run("extractor", "--version")
            match outcome.kind:
                case OutcomeKind.SUCCESS: ...
                case OutcomeKind.TIMEOUT: ...
        """
        correlation_id = correlation_id or str(uuid.uuid4())[:8]
        try:
            result = await self.execute(
                executable,
                arguments,
                cancel_event=cancel_event,
                timeout=timeout,
                correlation_id=correlation_id,
            )
        except InvalidInvocationError as e:
            return ExecutionOutcome(OutcomeKind.INVALID_INVOCATION, error=e)
        except ToolTimeoutError as e:
            return ExecutionOutcome(OutcomeKind.TIMEOUT, error=e)
        except ToolCancelledError as e:
            return ExecutionOutcome(OutcomeKind.CANCELLED, error=e)

        if result.success:
            return ExecutionOutcome(OutcomeKind.SUCCESS, result=result)

        return ExecutionOutcome(
            OutcomeKind.TOOL_FAILURE,
            result=result,
            error=ToolFailureError(
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                correlation_id=correlation_id,
            ),
        )


__all__ = [
    "ProcessExecutor",
    "EXTRACTOR",
    "TRANSCODER",
    "DEFAULT_KILL_GRACE",
    "kill_process_tree",
]
