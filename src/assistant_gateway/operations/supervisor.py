from __future__ import annotations

import asyncio
import os
import platform
import signal
import subprocess
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from loguru import logger

from assistant_gateway.app_config import FrontendConfig
from assistant_gateway.sessions.models import utc_now

_IS_WINDOWS = platform.system() == "Windows"

FRONTEND_PROCESS_NAME = "frontend-dev"
MAX_LOGS = 200

PortProbe = Callable[[int], Awaitable[bool]]


@dataclass(frozen=True)
class OperationLogEntry:
    timestamp: datetime
    source: str
    level: str
    message: str


@dataclass
class ProcessStatus:
    name: str
    is_running: bool = False
    pid: int | None = None
    port: int | None = None
    port_open: bool | None = None
    started_at: datetime | None = None
    exited_at: datetime | None = None
    exit_code: int | None = None
    last_output: str | None = None
    last_error: str | None = None
    recent_logs: list[OperationLogEntry] = field(default_factory=list)


@dataclass
class OperationsStatus:
    frontend: ProcessStatus
    timestamp: datetime = field(default_factory=utc_now)


@dataclass
class OperationsActionResult:
    action: str
    status: str
    message: str | None = None
    snapshot: OperationsStatus | None = None
    timestamp: datetime = field(default_factory=utc_now)


@dataclass
class DiagnosticCheckResult:
    command: str
    exit_code: int | None = None
    output: str | None = None
    error: str | None = None
    timed_out: bool = False


@dataclass
class DiagnosticsResult:
    checks: list[DiagnosticCheckResult] = field(default_factory=list)
    ran_at: datetime = field(default_factory=utc_now)


async def is_port_open(port: int, host: str = "127.0.0.1", timeout: float = 0.5) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def resolve_repo_root(start: str | None = None) -> str:
    """Walk up from start until a directory holding the frontend project is found."""
    current = Path(start or os.getcwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / "Frontend").is_dir():
            return str(candidate)
    return str(current)


class OperationsSupervisor:
    """Runs the frontend dev server as a child process and keeps its recent output."""

    def __init__(
        self,
        frontend: FrontendConfig,
        *,
        repo_root: str | None = None,
        diagnostic_commands: list[list[str]] | None = None,
        command_timeout_seconds: float = 20.0,
        port_probe: PortProbe | None = None,
    ):
        self._frontend = frontend
        self._repo_root = repo_root or resolve_repo_root()
        self._diagnostic_commands = diagnostic_commands or [
            ["node", "--version"],
            ["npm", "--version"],
            ["git", "--version"],
        ]
        self._command_timeout_seconds = command_timeout_seconds
        self._port_probe = port_probe or is_port_open
        self._process: asyncio.subprocess.Process | None = None
        self._status = ProcessStatus(name=FRONTEND_PROCESS_NAME, port=frontend.port)
        self._logs: deque[OperationLogEntry] = deque(maxlen=MAX_LOGS)
        self._io_tasks: list[asyncio.Task] = []

    @property
    def frontend_directory(self) -> str:
        directory = Path(self._frontend.directory)
        if not directory.is_absolute():
            directory = Path(self._repo_root) / directory
        return str(directory)

    async def get_status(self) -> OperationsStatus:
        status = self._status
        status.port_open = await self._port_probe(self._frontend.port)
        process = self._process
        if process is None:
            status.is_running = False
            status.pid = None
        else:
            status.is_running = process.returncode is None
            status.pid = process.pid
        status.recent_logs = self.get_recent_logs()
        return OperationsStatus(frontend=ProcessStatus(**vars(status)))

    def get_recent_logs(self, count: int = 50) -> list[OperationLogEntry]:
        """Newest first."""
        count = max(1, min(count, MAX_LOGS))
        return list(reversed(self._logs))[:count]

    async def start_frontend(self) -> OperationsActionResult:
        action = "start_frontend"
        process = self._process
        if process is not None and process.returncode is None:
            return OperationsActionResult(
                action=action,
                status="already_running",
                message=f"Frontend already running (PID {process.pid}).",
                snapshot=await self.get_status(),
            )

        port = self._frontend.port
        if await self._port_probe(port):
            return OperationsActionResult(
                action=action,
                status="port_in_use",
                message=f"Port {port} is already in use.",
                snapshot=await self.get_status(),
            )

        await self._spawn(self._frontend.command, self.frontend_directory)
        if not await self._wait_for_port(port, self._frontend.start_timeout_seconds):
            self._append_log(FRONTEND_PROCESS_NAME, "warning", f"Port {port} did not open in time.")

        return OperationsActionResult(
            action=action,
            status="started",
            message="Frontend dev server started.",
            snapshot=await self.get_status(),
        )

    async def stop_frontend(self) -> OperationsActionResult:
        action = "stop_frontend"
        process = self._process
        if process is None:
            return OperationsActionResult(
                action=action,
                status="not_running",
                message="Frontend process is not tracked.",
                snapshot=await self.get_status(),
            )

        await self._terminate(process)
        self._process = None
        return OperationsActionResult(
            action=action,
            status="stopped",
            message="Frontend dev server stopped.",
            snapshot=await self.get_status(),
        )

    async def restart_frontend(self) -> OperationsActionResult:
        await self.stop_frontend()
        started = await self.start_frontend()
        return OperationsActionResult(
            action="restart_frontend",
            status=started.status,
            message=started.message,
            snapshot=started.snapshot,
        )

    async def run_diagnostics(self) -> DiagnosticsResult:
        result = DiagnosticsResult()
        for command in self._diagnostic_commands:
            result.checks.append(await self._run_check(command))
        return result

    async def shutdown(self) -> None:
        process = self._process
        self._process = None
        if process is not None and process.returncode is None:
            await self._terminate(process)

    async def _spawn(self, command: list[str], cwd: str) -> None:
        kwargs: dict = {}
        if _IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            **kwargs,
        )
        self._process = process
        self._status = ProcessStatus(
            name=FRONTEND_PROCESS_NAME,
            port=self._frontend.port,
            is_running=True,
            pid=process.pid,
            started_at=utc_now(),
        )
        self._append_log(FRONTEND_PROCESS_NAME, "info", f"Process started (PID {process.pid}).")
        self._io_tasks = [
            asyncio.create_task(self._pump(process.stdout, "info")),
            asyncio.create_task(self._pump(process.stderr, "error")),
            asyncio.create_task(self._watch_exit(process)),
        ]

    async def _pump(self, stream: asyncio.StreamReader | None, level: str) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                return
            text = line.decode(errors="replace").rstrip()
            if not text.strip():
                continue
            self._append_log(FRONTEND_PROCESS_NAME, level, text)
            if level == "error":
                self._status.last_error = text
            else:
                self._status.last_output = text

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        exit_code = await process.wait()
        self._status.exited_at = utc_now()
        self._status.exit_code = exit_code
        self._append_log(FRONTEND_PROCESS_NAME, "info", f"Process exited with code {exit_code}.")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                if _IS_WINDOWS:
                    process.terminate()
                else:
                    os.killpg(process.pid, signal.SIGTERM)
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.warning(f"Process {process.pid} ignored SIGTERM, killing")
                process.kill()
                await process.wait()

        for task in self._io_tasks:
            task.cancel()
        await asyncio.gather(*self._io_tasks, return_exceptions=True)
        self._io_tasks = []

    async def _wait_for_port(self, port: int, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if await self._port_probe(port):
                return True
            await asyncio.sleep(0.5)
        return False

    async def _run_check(self, command: list[str]) -> DiagnosticCheckResult:
        result = DiagnosticCheckResult(command=" ".join(command))
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._repo_root,
            )
        except OSError as ex:
            result.error = str(ex)
            return result

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._command_timeout_seconds)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            result.timed_out = True
            return result

        result.exit_code = proc.returncode
        result.output = stdout.decode(errors="replace").strip()
        result.error = stderr.decode(errors="replace").strip() or None
        return result

    def _append_log(self, source: str, level: str, message: str) -> None:
        self._logs.append(OperationLogEntry(timestamp=utc_now(), source=source, level=level, message=message))
        logger.info(f"[{source}] {message}")
