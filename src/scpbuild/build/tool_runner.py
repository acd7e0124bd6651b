"""
External Tool Execution

This module runs external tools (compiler, archiver, linker, binary
extractors, QA tools) as subprocesses and tracks the ones still running so
that a failing build can tear them down.

Key features:
- Exit code is the only success signal
- Failures carry the command, exit code and captured output verbatim
- Running process trees are terminated with psutil on abort
- Thread-safe; one runner is shared by all executor workers
"""

import logging
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import psutil


class ToolInvocationError(Exception):
    """Raised when an external tool exits with a non-zero status."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        description: Optional[str] = None,
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.description = description or Path(self.command[0]).name
        message = f"{self.description} failed with exit code {returncode}"
        if stderr:
            message += f"\nstderr: {stderr}"
        if stdout:
            message += f"\nstdout: {stdout}"
        super().__init__(message)


@dataclass
class ToolResult:
    """Result of a successful tool run."""

    command: List[str]
    returncode: int
    stdout: str
    stderr: str


def kill_process_tree(pid: int, timeout: float = 3.0) -> int:
    """Terminate a process and all of its children.

    Args:
        pid: Root process id
        timeout: Seconds to wait for graceful termination before killing

    Returns:
        Number of processes signalled
    """
    try:
        root = psutil.Process(pid)
        processes = root.children(recursive=True)
        processes.reverse()
        processes.append(root)
    except psutil.NoSuchProcess:
        return 0

    terminated = []
    for proc in processes:
        try:
            proc.terminate()
            terminated.append(proc)
        except psutil.NoSuchProcess:
            pass

    _gone, alive = psutil.wait_procs(terminated, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
            logging.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass

    return len(terminated)


class ToolRunner:
    """Runs external tools and keeps track of running processes."""

    def __init__(self, timeout: Optional[float] = None, show_progress: bool = False):
        """Initialize the runner.

        Args:
            timeout: Per-command timeout in seconds (None for no limit)
            show_progress: Print each command's description before running it
        """
        self.timeout = timeout
        self.show_progress = show_progress
        self.lock = threading.Lock()
        self._running: Dict[int, subprocess.Popen] = {}
        self._aborted = False
        self.spawned = 0

    @property
    def aborted(self) -> bool:
        return self._aborted

    def run(
        self,
        command: Sequence[str],
        description: Optional[str] = None,
        cwd: Optional[Path] = None,
    ) -> ToolResult:
        """Run a command to completion.

        Args:
            command: Command line
            description: Short human readable description for progress output
            cwd: Working directory

        Returns:
            ToolResult

        Raises:
            ToolInvocationError: If the command fails, times out, cannot be
                started, or the runner was aborted
        """
        command = [str(part) for part in command]

        if self.show_progress and description:
            print(description)

        with self.lock:
            if self._aborted:
                raise ToolInvocationError(command, -1, description=description,
                                          stderr="build aborted")
            try:
                process = subprocess.Popen(
                    command,
                    cwd=str(cwd) if cwd else None,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                )
            except OSError as e:
                raise ToolInvocationError(command, 127, stderr=str(e), description=description) from e
            self.spawned += 1
            self._running[process.pid] = process

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            kill_process_tree(process.pid)
            stdout, stderr = process.communicate()
            raise ToolInvocationError(command, -1, stdout, f"timeout after {self.timeout}s\n{stderr}",
                                      description=description)
        except KeyboardInterrupt:
            kill_process_tree(process.pid)
            raise
        finally:
            with self.lock:
                self._running.pop(process.pid, None)

        logging.debug(f"{command[0]} exited with {process.returncode}")

        if process.returncode != 0:
            raise ToolInvocationError(command, process.returncode, stdout, stderr, description)

        return ToolResult(command=command, returncode=process.returncode, stdout=stdout, stderr=stderr)

    def abort(self) -> int:
        """Refuse new commands and terminate every running process tree.

        Returns:
            Number of processes signalled
        """
        with self.lock:
            self._aborted = True
            running = list(self._running)

        killed = 0
        for pid in running:
            killed += kill_process_tree(pid)
        if killed:
            logging.info(f"Terminated {killed} running tool processes")
        return killed
