"""Process utility layer.

This module is the OS boundary of the engine: spawning detached processes,
probing liveness, sending termination signals and inspecting ports. The
orchestrator and supervisor depend only on the ProcessUtils protocol, so tests
and alternative platforms can inject their own implementation.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import sys
from dataclasses import dataclass
from typing import Protocol

import psutil

logger = logging.getLogger(__name__)

# Dev servers asked for "localhost" may bind either family
_LOOPBACK_HOSTS = ("127.0.0.1", "::1")


@dataclass(frozen=True)
class ProcessHandle:
    """Handle to a spawned process; pid is None if the OS gave none back."""

    pid: int | None


class ProcessUtils(Protocol):
    """Operations the engine needs from the operating system."""

    def spawn(
        self, command: str, args: list[str], cwd: str, env: dict[str, str]
    ) -> ProcessHandle:
        """Start a detached process with discarded standard streams."""
        ...

    def is_alive(self, pid: int) -> bool:
        """Check whether a process is still running."""
        ...

    def terminate(self, pid: int, *, force: bool = False) -> None:
        """Send a graceful (or, with force, a non-ignorable) termination signal."""
        ...

    def is_port_free(self, port: int, host: str = "127.0.0.1") -> bool:
        """Check whether nothing accepts connections on a port."""
        ...

    def owner_of_port(self, port: int) -> int | None:
        """Find the pid listening on a port, if it can be resolved."""
        ...

    def find_by_command(self, command: str) -> int | None:
        """Find the pid of a process whose command line contains a command."""
        ...


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


class SystemProcessUtils:
    """ProcessUtils backed by subprocess, socket and psutil."""

    def __init__(self, probe_timeout: float = 0.5) -> None:
        """Initialise with the timeout used for port connection probes.

        Args:
            probe_timeout: Seconds to wait for a TCP connect during port probes.

        """
        self._probe_timeout = probe_timeout
        # Popen objects for children we spawned, so exited ones get reaped
        self._children: dict[int, subprocess.Popen[bytes]] = {}

    def spawn(
        self, command: str, args: list[str], cwd: str, env: dict[str, str]
    ) -> ProcessHandle:
        """Start a process detached from our own lifetime.

        Raises:
            OSError: If the executable cannot be found or started.

        """
        if is_windows():
            proc = subprocess.Popen(
                [command, *args],
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                creationflags=subprocess.CREATE_NEW_PROCESS_GROUP
                | subprocess.CREATE_NO_WINDOW,
            )
        else:
            proc = subprocess.Popen(
                [command, *args],
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )

        if proc.pid:
            self._children[proc.pid] = proc
        return ProcessHandle(pid=proc.pid or None)

    def is_alive(self, pid: int) -> bool:
        """Check whether a process is running (zombies count as dead)."""
        child = self._children.get(pid)
        if child is not None:
            if child.poll() is None:
                return True
            # Exited and reaped
            del self._children[pid]
            return False

        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Exists but belongs to someone else
            return True

    def terminate(self, pid: int, *, force: bool = False) -> None:
        """Signal a process and its descendants.

        Graceful termination sends SIGTERM; force sends SIGKILL (or the
        platform equivalent). A process that is already gone is ignored.
        """
        try:
            parent = psutil.Process(pid)
            targets = [*parent.children(recursive=True), parent]
        except psutil.NoSuchProcess:
            logger.debug("Process %d already exited", pid)
            return

        for proc in targets:
            try:
                if force:
                    proc.kill()
                else:
                    proc.terminate()
            except psutil.NoSuchProcess:
                continue

    def is_port_free(self, port: int, host: str = "127.0.0.1") -> bool:
        """Check whether nothing listens on a port.

        The port counts as bound if a TCP connect to the given host or to
        either loopback address succeeds, or if the socket table shows a
        listener on it for any address.
        """
        for address in dict.fromkeys((host, *_LOOPBACK_HOSTS)):
            if self._accepts_connection(address, port):
                return False
        return not self._has_listener(port)

    def _accepts_connection(self, host: str, port: int) -> bool:
        try:
            with socket.create_connection((host, port), timeout=self._probe_timeout):
                return True
        except OSError:
            return False

    def _has_listener(self, port: int) -> bool:
        """Check the socket table for a listener; False if not permitted."""
        try:
            return any(
                conn.status == psutil.CONN_LISTEN
                and conn.laddr
                and conn.laddr.port == port
                for conn in psutil.net_connections(kind="inet")
            )
        except (psutil.AccessDenied, PermissionError):
            return False

    def owner_of_port(self, port: int) -> int | None:
        """Find the pid listening on a port; None if unresolvable."""
        try:
            for conn in psutil.net_connections(kind="inet"):
                if (
                    conn.status == psutil.CONN_LISTEN
                    and conn.laddr
                    and conn.laddr.port == port
                    and conn.pid
                ):
                    return conn.pid
            return None
        except (psutil.AccessDenied, PermissionError):
            # macOS restricts net_connections to root
            return self._owner_of_port_lsof(port)

    def _owner_of_port_lsof(self, port: int) -> int | None:
        """Resolve a port owner with lsof when psutil is not permitted."""
        if is_windows():
            return None
        try:
            result = subprocess.run(
                ["lsof", "-t", f"-i:{port}", "-sTCP:LISTEN"],
                capture_output=True,
                text=True,
                timeout=5,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("lsof lookup for port %d failed: %s", port, e)
            return None

        first = result.stdout.strip().split("\n")[0]
        return int(first) if first.isdigit() else None

    def find_by_command(self, command: str) -> int | None:
        """Find a process whose command line contains the given command."""
        own_pid = os.getpid()
        # Command lines are compared single-spaced, as rebuilt from argv
        needle = " ".join(command.split()).lower()
        for proc in psutil.process_iter(["pid", "cmdline"]):
            try:
                cmdline = proc.info["cmdline"]
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if not cmdline or proc.info["pid"] == own_pid:
                continue
            if needle in " ".join(cmdline).lower():
                return proc.info["pid"]
        return None
