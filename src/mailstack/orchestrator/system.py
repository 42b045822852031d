"""
System Interfaces
Thin wrappers over systemctl, ss, pkill and process spawning
"""

import logging
import re
import socket
import subprocess
from typing import List, Optional, Set

from .errors import CommandError

logger = logging.getLogger(__name__)


def run_command(
    argv: List[str],
    check: bool = False,
    timeout: Optional[float] = None
) -> subprocess.CompletedProcess:
    """
    Run a command and capture its output

    Args:
        argv: Command and arguments
        check: Raise CommandError on a non-zero exit code
        timeout: Seconds before the command is killed

    Returns:
        Completed process with text stdout/stderr

    Raises:
        CommandError: If the executable is missing, times out, or fails with check=True
    """
    cmd_str = " ".join(argv)
    logger.debug(f"Running: {cmd_str}")

    try:
        result = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout
        )
    except FileNotFoundError:
        raise CommandError(f"Command not found: {argv[0]}", argv)
    except subprocess.TimeoutExpired:
        raise CommandError(f"Command timed out after {timeout}s: {cmd_str}", argv)

    if check and result.returncode != 0:
        raise CommandError(
            f"Command failed ({result.returncode}): {cmd_str}: {result.stderr.strip()}",
            argv
        )
    return result


# ========================
# Service Manager
# ========================

class ServiceControl:
    """Interface to the OS service manager"""

    def daemon_reload(self) -> None:
        raise NotImplementedError

    def enable(self, name: str) -> None:
        raise NotImplementedError

    def start(self, name: str, timeout: Optional[float] = None) -> bool:
        raise NotImplementedError

    def stop(self, name: str) -> bool:
        raise NotImplementedError

    def reload(self, name: str) -> bool:
        raise NotImplementedError

    def is_active(self, name: str) -> bool:
        raise NotImplementedError

    def journal_tail(self, name: str, lines: int = 5) -> str:
        return ""


class SystemctlServiceControl(ServiceControl):
    """ServiceControl backed by systemctl and journalctl"""

    def daemon_reload(self) -> None:
        run_command(["systemctl", "daemon-reload"])

    def enable(self, name: str) -> None:
        result = run_command(["systemctl", "enable", name])
        if result.returncode != 0:
            logger.debug(f"systemctl enable {name} failed: {result.stderr.strip()}")

    def start(self, name: str, timeout: Optional[float] = None) -> bool:
        """
        Start a unit

        Returns:
            True if systemctl accepted the start request in time
        """
        try:
            result = run_command(["systemctl", "start", name], timeout=timeout)
        except CommandError as e:
            logger.error(f"❌ {e}")
            return False
        if result.returncode != 0:
            logger.error(f"❌ systemctl start {name}: {result.stderr.strip()}")
        return result.returncode == 0

    def stop(self, name: str) -> bool:
        """
        Stop a unit

        Returns:
            True if systemctl accepted the stop request
        """
        result = run_command(["systemctl", "stop", name])
        if result.returncode != 0:
            logger.warning(f"⚠️  systemctl stop {name}: {result.stderr.strip()}")
        return result.returncode == 0

    def reload(self, name: str) -> bool:
        return run_command(["systemctl", "reload", name]).returncode == 0

    def is_active(self, name: str) -> bool:
        try:
            return run_command(["systemctl", "is-active", "--quiet", name]).returncode == 0
        except CommandError:
            return False

    def journal_tail(self, name: str, lines: int = 5) -> str:
        try:
            result = run_command(
                ["journalctl", "-u", name, "--no-pager", "-l", "-n", str(lines)]
            )
        except CommandError:
            return ""
        return result.stdout.strip()


# ========================
# Socket Table
# ========================

# Local address column of `ss -tuln`: 0.0.0.0:25, [::]:993, *:80, 127.0.0.1%lo:53
_LOCAL_ADDRESS = re.compile(r":(\d+)$")


def parse_listening_ports(ss_output: str) -> Set[int]:
    """
    Extract listening port numbers from `ss -tuln` output

    Args:
        ss_output: Raw command output including the header line

    Returns:
        Set of port numbers with a listening socket
    """
    ports = set()
    for line in ss_output.splitlines():
        fields = line.split()
        # Netid State Recv-Q Send-Q Local Peer
        if len(fields) < 5 or fields[0] == "Netid":
            continue
        match = _LOCAL_ADDRESS.search(fields[4])
        if match:
            ports.add(int(match.group(1)))
    return ports


class PortInspector:
    """Interface to the network namespace"""

    def listening_ports(self) -> Set[int]:
        raise NotImplementedError

    def can_connect(self, port: int, host: str = "127.0.0.1") -> bool:
        raise NotImplementedError


class SocketTablePortInspector(PortInspector):
    """PortInspector backed by `ss -tuln` and TCP connect probes"""

    def __init__(self, connect_timeout: float = 3.0):
        self.connect_timeout = connect_timeout

    def listening_ports(self) -> Set[int]:
        result = run_command(["ss", "-tuln"], check=True)
        return parse_listening_ports(result.stdout)

    def can_connect(self, port: int, host: str = "127.0.0.1") -> bool:
        try:
            with socket.create_connection((host, port), timeout=self.connect_timeout):
                return True
        except OSError:
            return False


# ========================
# Processes
# ========================

class ProcessControl:
    """Interface for signalling and launching processes directly"""

    def kill_matching(self, pattern: str) -> bool:
        raise NotImplementedError

    def spawn(self, argv: List[str]) -> int:
        raise NotImplementedError


class OSProcessControl(ProcessControl):
    """ProcessControl backed by pkill and subprocess.Popen"""

    def kill_matching(self, pattern: str) -> bool:
        """
        Send SIGTERM to processes whose command line matches ``pattern``

        Returns:
            True if at least one process was signalled
        """
        result = run_command(["pkill", "-f", pattern])
        # pkill exits 1 when nothing matched
        if result.returncode not in (0, 1):
            raise CommandError(
                f"pkill -f {pattern} failed ({result.returncode}): {result.stderr.strip()}",
                ["pkill", "-f", pattern]
            )
        return result.returncode == 0

    def spawn(self, argv: List[str]) -> int:
        """
        Launch a detached background process

        Returns:
            PID of the new process
        """
        logger.debug(f"Spawning: {' '.join(argv)}")
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True
            )
        except OSError as e:
            raise CommandError(f"Cannot launch {argv[0]}: {e}", argv)
        return process.pid
