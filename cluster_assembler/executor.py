"""Command execution on cluster hosts.

The assembler only needs two capabilities from a host: run a shell command and
get its captured output back, and copy a local file onto it. ``HostRunner``
defines that contract together with the retry and fatal-exit handling shared by
every transport; ``SSHRunner`` implements it over Paramiko.
"""

import os
import threading
import time
from abc import ABC, abstractmethod

import paramiko

from cluster_assembler.exceptions import ExecutionError
from cluster_assembler.logging_config import get_logger
from cluster_assembler.models.node import Node

logger = get_logger(__name__)


def sudo(command: str) -> str:
    """Wrap a command to run as root with the caller's environment."""
    return f'sudo -E /bin/sh -c "{command}"'


def sudo_with_path(command: str) -> str:
    """Wrap a command to run as root keeping the caller's PATH."""
    return f'sudo env PATH=$PATH /bin/sh -c "{command}"'


class HostRunner(ABC):
    """Runs commands on a single host."""

    def __init__(self, node: Node, retry_delay: float = 5.0):
        """Initialize the runner.

        Args:
            node: Host this runner talks to
            retry_delay: Seconds to wait between retries of a failed command
        """
        self.node = node
        self.retry_delay = retry_delay

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        """Release the connection to the host, if any."""

    @abstractmethod
    def _run(self, command: str) -> tuple[int, str]:
        """Run a command once and return its exit status and captured output.

        Raises:
            ExecutionError: If the command could not be run at all
        """

    @abstractmethod
    def copy_file(self, local_path: str, remote_path: str) -> None:
        """Copy a local file to a path on the host.

        Raises:
            ExecutionError: If the transfer fails
        """

    def execute(self, command: str, retries: int = 0, check: bool = True) -> str:
        """Run a command, retrying on failure.

        Args:
            command: Shell command line
            retries: Extra attempts after the first failure
            check: If True, a command that still fails raises ExecutionError;
                otherwise its output is returned as-is

        Returns:
            Captured output with surrounding whitespace removed

        Raises:
            ExecutionError: If check is True and every attempt failed
        """
        last_error: ExecutionError | None = None
        output = ""
        for attempt in range(retries + 1):
            if attempt:
                logger.debug(f"[{self.node.name}] retrying in {self.retry_delay}s")
                time.sleep(self.retry_delay)

            logger.debug(f"[{self.node.name}] $ {command}")
            try:
                status, output = self._run(command)
            except ExecutionError as e:
                logger.warning(f"[{self.node.name}] channel failure: {e.message}")
                last_error = e
                output = e.output
                continue

            if status == 0:
                return output.strip()

            logger.debug(f"[{self.node.name}] exit status {status}: {output.strip()}")
            last_error = ExecutionError(
                f"Command failed on {self.node.name} with exit status {status}",
                output.strip() or None,
                command=command,
                exit_status=status,
                output=output.strip(),
            )

        if check and last_error is not None:
            raise last_error
        return output.strip()


class SSHRunner(HostRunner):
    """HostRunner over an SSH connection."""

    def __init__(self, node: Node, retry_delay: float = 5.0, timeout: int = 60):
        super().__init__(node, retry_delay=retry_delay)
        self.timeout = timeout
        self._client: paramiko.SSHClient | None = None
        self._lock = threading.Lock()

    def _connect(self) -> paramiko.SSHClient:
        with self._lock:
            if self._client is not None:
                return self._client

            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            kwargs = {
                "hostname": self.node.address,
                "port": self.node.port,
                "username": self.node.user,
                "timeout": self.timeout,
            }
            if self.node.private_key_path:
                kwargs["key_filename"] = os.path.expanduser(self.node.private_key_path)
            if self.node.password:
                kwargs["password"] = self.node.password

            logger.debug(f"Connecting to {self.node.user}@{self.node.address}:{self.node.port}")
            try:
                client.connect(**kwargs)
            except (paramiko.SSHException, OSError) as e:
                client.close()
                raise ExecutionError(
                    f"Failed to connect to {self.node.name} ({self.node.address})",
                    str(e),
                ) from e

            self._client = client
            return client

    def _run(self, command: str) -> tuple[int, str]:
        client = self._connect()
        try:
            # A pty merges stderr into stdout, so callers see one combined stream
            _, stdout, _ = client.exec_command(command, get_pty=True)
            output = stdout.read().decode("utf-8", errors="replace")
            status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            self.close()
            raise ExecutionError(
                f"SSH channel to {self.node.name} failed", str(e), command=command
            ) from e
        return status, output

    def copy_file(self, local_path: str, remote_path: str) -> None:
        client = self._connect()
        logger.debug(f"[{self.node.name}] copy {local_path} -> {remote_path}")
        try:
            with client.open_sftp() as sftp:
                sftp.put(local_path, remote_path)
        except (paramiko.SSHException, OSError) as e:
            raise ExecutionError(
                f"Failed to copy {local_path} to {self.node.name}:{remote_path}", str(e)
            ) from e

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
