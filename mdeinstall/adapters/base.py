"""
System facade — the contract between the engine and the host OS.

Every registry, service, file-version, signature, process and network
primitive the engine needs goes through this interface.  Components
receive a facade by injection and never touch winreg, ctypes or
PowerShell themselves, so the whole engine runs deterministically
against ``FakeSystem`` in tests.

Absence is a normal outcome: reading a missing registry value, a
missing service or a missing file returns None, never raises.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Any

from mdeinstall.core.models.system import FileInfo, ServiceStatus


class SystemFacade(ABC):
    """Abstract base class for host-system access.

    To create a new backend:
        1. Subclass SystemFacade
        2. Implement every abstract method
        3. Pass an instance to LifecycleController
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (e.g., 'windows', 'fake')."""

    # ── Identity ────────────────────────────────────────────────

    @abstractmethod
    def host_name(self) -> str:
        """Local computer name."""

    @abstractmethod
    def is_administrator(self) -> bool:
        """Whether the process token is a member of BUILTIN\\Administrators."""

    @abstractmethod
    def expand_path(self, path: str) -> str:
        """Expand environment references such as ``%SystemRoot%``."""

    # ── Files ───────────────────────────────────────────────────

    @abstractmethod
    def file_info(self, path: str) -> FileInfo | None:
        """Version resource of a file, or None if the file does not exist."""

    @abstractmethod
    def open_file(self, path: str) -> IO[bytes]:
        """Open a file for reading.

        Raises:
            FileNotFoundError: If the file does not exist.
            PermissionError: If another process holds it exclusively.
        """

    @abstractmethod
    def authenticode_status(self, path: str) -> str:
        """Signature verdict of a file ('Valid', 'NotSigned', 'HashMismatch', ...)."""

    @abstractmethod
    def msi_file_version(self, msi_path: str, file_name: str) -> str | None:
        """Version of ``file_name`` in an MSI's File table, or None if absent."""

    # ── Registry ────────────────────────────────────────────────

    @abstractmethod
    def read_registry_value(self, key: str, name: str) -> Any | None:
        """Read ``name`` under ``key`` (e.g. ``HKLM\\SOFTWARE\\...``); None if absent."""

    @abstractmethod
    def list_registry_subkeys(self, key: str) -> list[str]:
        """Child key names under ``key``; empty if the key does not exist."""

    @abstractmethod
    def write_registry_value(self, key: str, name: str, value: int | str) -> None:
        """Create or overwrite a value.

        Raises:
            PermissionError: If the caller's token cannot write the key.
        """

    @abstractmethod
    def delete_registry_value(self, key: str, name: str) -> None:
        """Delete a value; a missing value is not an error.

        Raises:
            PermissionError: If the caller's token cannot write the key.
        """

    @abstractmethod
    def rename_registry_key(self, key: str, new_name: str) -> None:
        """Rename the last segment of ``key`` to ``new_name``."""

    @abstractmethod
    def delete_registry_key(self, key: str) -> None:
        """Delete ``key`` and everything below it."""

    # ── Services / updates ──────────────────────────────────────

    @abstractmethod
    def service_status(self, name: str) -> ServiceStatus | None:
        """Status of a service, or None if it is not registered."""

    @abstractmethod
    def installed_hotfixes(self) -> set[str]:
        """Identifiers (``KBnnnnnnn``) listed in the OS patch catalog."""

    # ── Processes / network / time ──────────────────────────────

    @abstractmethod
    def spawn(
        self,
        executable: str,
        args: list[str],
        *,
        cwd: str | None,
        stdout: IO[bytes],
        stderr: IO[bytes],
        stdin_text: str | None = None,
    ) -> int:
        """Run a process to completion with redirected streams; return its exit code.

        Raises:
            OSError: If the executable cannot be started.
        """

    @abstractmethod
    def download(self, url: str, dest: Path, timeout: int) -> None:
        """Fetch ``url`` into ``dest``.

        Raises:
            OSError: On any network or write failure.
        """

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Block for ``seconds``."""

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic clock in seconds."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
