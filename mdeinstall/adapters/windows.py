"""
Windows system — the real SystemFacade.

Registry through ``winreg`` (64-bit view), token membership and key
renames through ``ctypes``, version resources, signatures and the MSI
File table through short PowerShell queries, processes through
``subprocess``, downloads through ``urllib.request``.

Importable on any platform; only instantiation needs Windows.
"""

from __future__ import annotations

import ctypes
import json
import logging
import os
import shutil
import socket
import subprocess
import sys
import time
import urllib.request
from pathlib import Path
from typing import IO, Any

from mdeinstall import __version__
from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.models.system import FileInfo, OSVersion, ServiceStatus
from mdeinstall.core.services.deploy.data.constants import POWERSHELL, SC, SERVICES_KEY

if sys.platform == "win32":
    import winreg

logger = logging.getLogger(__name__)

# sc.exe: "The specified service does not exist as an installed service"
ERROR_SERVICE_DOES_NOT_EXIST = 1060

_HIVES = {
    "HKLM": "HKEY_LOCAL_MACHINE",
    "HKEY_LOCAL_MACHINE": "HKEY_LOCAL_MACHINE",
    "HKCR": "HKEY_CLASSES_ROOT",
    "HKEY_CLASSES_ROOT": "HKEY_CLASSES_ROOT",
}

_SERVICE_STATES = {
    "1": "stopped",
    "2": "start_pending",
    "3": "stop_pending",
    "4": "running",
    "5": "continue_pending",
    "6": "pause_pending",
    "7": "paused",
}


def _ps_quote(text: str) -> str:
    """Single-quoted PowerShell string literal."""
    return "'" + str(text).replace("'", "''") + "'"


class WindowsSystem(SystemFacade):
    """Host access on Windows Server."""

    def __init__(self) -> None:
        if sys.platform != "win32":
            raise OSError("WindowsSystem requires Windows; use --mock elsewhere")

    @property
    def name(self) -> str:
        return "windows"

    # ── Identity ────────────────────────────────────────────────

    def host_name(self) -> str:
        return os.environ.get("COMPUTERNAME") or socket.gethostname()

    def is_administrator(self) -> bool:
        """CheckTokenMembership against S-1-5-32-544 (BUILTIN\\Administrators)."""
        advapi32 = ctypes.windll.advapi32
        sid = ctypes.c_void_p()
        authority = (ctypes.c_ubyte * 6)(0, 0, 0, 0, 0, 5)      # SECURITY_NT_AUTHORITY
        if not advapi32.AllocateAndInitializeSid(
            ctypes.byref(authority), 2,
            32, 544,                                           # BUILTIN, ADMINS
            0, 0, 0, 0, 0, 0,
            ctypes.byref(sid),
        ):
            raise ctypes.WinError()
        try:
            member = ctypes.c_int(0)
            if not advapi32.CheckTokenMembership(None, sid, ctypes.byref(member)):
                raise ctypes.WinError()
            return bool(member.value)
        finally:
            advapi32.FreeSid(sid)

    def expand_path(self, path: str) -> str:
        return os.path.expandvars(str(path))

    # ── Files ───────────────────────────────────────────────────

    def file_info(self, path: str) -> FileInfo | None:
        if not Path(path).is_file():
            return None
        script = (
            f"$v = (Get-Item -LiteralPath {_ps_quote(path)}).VersionInfo; "
            "[pscustomobject]@{ Major = $v.FileMajorPart; Minor = $v.FileMinorPart; "
            "Build = $v.FileBuildPart; Revision = $v.FilePrivatePart; "
            "ProductName = $v.ProductName; InternalName = $v.InternalName } "
            "| ConvertTo-Json -Compress"
        )
        data = json.loads(self._powershell(script) or "{}")
        parts = [data.get(k) for k in ("Major", "Minor", "Build", "Revision")]
        version = OSVersion(*parts) if any(parts) else None
        return FileInfo(
            path=path,
            version=version,
            product_name=data.get("ProductName") or "",
            internal_name=data.get("InternalName") or "",
        )

    def open_file(self, path: str) -> IO[bytes]:
        return open(path, "rb")

    def authenticode_status(self, path: str) -> str:
        script = f"(Get-AuthenticodeSignature -LiteralPath {_ps_quote(path)}).Status.ToString()"
        return self._powershell(script).strip() or "UnknownError"

    def msi_file_version(self, msi_path: str, file_name: str) -> str | None:
        pattern = "(^|\\|)" + file_name.replace(".", "\\.") + "$"
        script = (
            "$i = New-Object -ComObject WindowsInstaller.Installer; "
            f"$db = $i.GetType().InvokeMember('OpenDatabase', 'InvokeMethod', $null, $i, @({_ps_quote(msi_path)}, 0)); "
            "$v = $db.GetType().InvokeMember('OpenView', 'InvokeMethod', $null, $db, "
            "@('SELECT FileName, Version FROM File')); "
            "$v.GetType().InvokeMember('Execute', 'InvokeMethod', $null, $v, $null); "
            "while ($r = $v.GetType().InvokeMember('Fetch', 'InvokeMethod', $null, $v, $null)) { "
            "$n = $r.GetType().InvokeMember('StringData', 'GetProperty', $null, $r, 1); "
            f"if ($n -match {_ps_quote(pattern)}) {{ "
            "$r.GetType().InvokeMember('StringData', 'GetProperty', $null, $r, 2); break } }"
        )
        version = self._powershell(script).strip()
        return version or None

    # ── Registry ────────────────────────────────────────────────

    def read_registry_value(self, key: str, name: str) -> Any | None:
        try:
            with self._open_key(key) as handle:
                value, _ = winreg.QueryValueEx(handle, name)
                return value
        except FileNotFoundError:
            return None

    def list_registry_subkeys(self, key: str) -> list[str]:
        names: list[str] = []
        try:
            with self._open_key(key) as handle:
                index = 0
                while True:
                    try:
                        names.append(winreg.EnumKey(handle, index))
                    except OSError:
                        break
                    index += 1
        except FileNotFoundError:
            return []
        return names

    def write_registry_value(self, key: str, name: str, value: int | str) -> None:
        hive, sub = self._split(key)
        with winreg.CreateKeyEx(hive, sub, 0, winreg.KEY_SET_VALUE | winreg.KEY_WOW64_64KEY) as handle:
            kind = winreg.REG_DWORD if isinstance(value, int) else winreg.REG_SZ
            winreg.SetValueEx(handle, name, 0, kind, value)

    def delete_registry_value(self, key: str, name: str) -> None:
        try:
            with self._open_key(key, winreg.KEY_SET_VALUE) as handle:
                winreg.DeleteValue(handle, name)
        except FileNotFoundError:
            pass

    def rename_registry_key(self, key: str, new_name: str) -> None:
        with self._open_key(key, winreg.KEY_ALL_ACCESS) as handle:
            status = ctypes.windll.advapi32.RegRenameKey(
                ctypes.c_void_p(int(handle)), None, ctypes.c_wchar_p(new_name),
            )
        if status != 0:
            raise ctypes.WinError(status)

    def delete_registry_key(self, key: str) -> None:
        for child in self.list_registry_subkeys(key):
            self.delete_registry_key(f"{key}\\{child}")
        hive, sub = self._split(key)
        winreg.DeleteKeyEx(hive, sub, winreg.KEY_WOW64_64KEY, 0)

    # ── Services / updates ──────────────────────────────────────

    def service_status(self, name: str) -> ServiceStatus | None:
        proc = subprocess.run(
            [self.expand_path(SC), "query", name],
            capture_output=True, text=True, check=False,
        )
        if proc.returncode == ERROR_SERVICE_DOES_NOT_EXIST:
            return None
        state = "unknown"
        for line in proc.stdout.splitlines():
            if "STATE" in line and ":" in line:
                code = line.split(":", 1)[1].split()[0]
                state = _SERVICE_STATES.get(code, "unknown")
                break
        key = f"{SERVICES_KEY}\\{name}"
        return ServiceStatus(
            name=name,
            state=state,
            image_path=self.read_registry_value(key, "ImagePath"),
            start_type=self.read_registry_value(key, "Start"),
        )

    def installed_hotfixes(self) -> set[str]:
        output = self._powershell("Get-HotFix | ForEach-Object { $_.HotFixID }")
        return {line.strip().upper() for line in output.splitlines() if line.strip()}

    # ── Processes / network / time ──────────────────────────────

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
        proc = subprocess.run(
            [executable, *args],
            cwd=cwd,
            stdout=stdout,
            stderr=stderr,
            input=stdin_text.encode("utf-8") if stdin_text is not None else None,
            stdin=subprocess.DEVNULL if stdin_text is None else None,
            check=False,
        )
        return proc.returncode

    def download(self, url: str, dest: Path, timeout: int) -> None:
        req = urllib.request.Request(url, headers={"User-Agent": f"mdeinstall/{__version__}"})
        with urllib.request.urlopen(req, timeout=timeout) as resp, dest.open("wb") as out:
            shutil.copyfileobj(resp, out)

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def monotonic(self) -> float:
        return time.monotonic()

    # ── internals ───────────────────────────────────────────────

    @staticmethod
    def _split(key: str) -> tuple[int, str]:
        root, _, sub = key.partition("\\")
        try:
            hive = getattr(winreg, _HIVES[root.upper()])
        except KeyError as e:
            raise ValueError(f"Unsupported registry hive in {key!r}") from e
        return hive, sub

    def _open_key(self, key: str, access: int | None = None):
        hive, sub = self._split(key)
        access = winreg.KEY_READ if access is None else access
        return winreg.OpenKey(hive, sub, 0, access | winreg.KEY_WOW64_64KEY)

    def _powershell(self, script: str) -> str:
        proc = subprocess.run(
            [self.expand_path(POWERSHELL), "-NoProfile", "-NonInteractive", "-Command", script],
            capture_output=True, text=True, check=False,
        )
        if proc.returncode != 0:
            logger.debug("PowerShell query failed (%d): %s", proc.returncode, proc.stderr.strip())
        return proc.stdout
