"""
Fake system — in-memory host for tests and ``--mock`` rehearsals.

Registry, services, file versions, signatures, the patch catalog and
downloads all live in dictionaries.  Processes are simulated by
handlers keyed on the executable's base name; logman, schtasks and
msiexec have built-in handlers that behave like the real tools closely
enough for the engine (logman creates its buffer file, schtasks runs
its ``reg.exe`` command, msiexec registers the product and writes its
log).  Time is virtual: ``sleep`` advances ``monotonic`` instantly.

Every spawn is recorded in ``call_log``.
"""

from __future__ import annotations

import io
import ntpath
import re
import shlex
from collections.abc import Callable
from pathlib import Path
from typing import IO, Any, NamedTuple

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.models.system import FileInfo, OSVersion, ServiceStatus
from mdeinstall.core.services.deploy.data.constants import (
    CURRENT_VERSION_KEY,
    ENGINE_FILE,
    INSTALLATION_TYPE_VALUE,
    KERNEL_IMAGE,
    ONBOARDING_STATUS_KEY,
    ONBOARDING_STATUS_VALUE,
    PROTECTION_SERVICE,
    SERVICES_KEY,
    UNINSTALL_KEY,
)

# A handler receives the argument list and returns an exit code, or
# (exit code, stdout text, stderr text).
ProcessHandler = Callable[[list[str]], "int | tuple[int, str, str]"]

FAKE_PRODUCT_ID = "{A9F3E2C1-5B7D-4E60-9C2A-1D8F0B3E7A45}"
FAKE_PRODUCT_NAME = "Microsoft Defender for Endpoint"

# logman's "Data Collector Set was not found"
LOGMAN_NOT_FOUND = -2144337918

_ENV_RE = re.compile(r"%([^%]+)%")


class SpawnCall(NamedTuple):
    executable: str
    args: tuple[str, ...]
    cwd: str | None
    stdin_text: str | None

    @property
    def tool(self) -> str:
        """Lower-case base name of the executable."""
        return ntpath.basename(self.executable).lower()


class FakeSystem(SystemFacade):
    """In-memory SystemFacade.

    By default: an administrator on a Server 2016 host with nothing
    installed and no process handlers beyond the built-in ones.
    """

    def __init__(
        self,
        *,
        host: str = "FAKEHOST",
        os_version: OSVersion | None = OSVersion(10, 0, 14393, 4651),
        administrator: bool = True,
        installation_type: str = "Server",
    ):
        self._host = host
        self.administrator = administrator
        self.environment = {
            "systemroot": r"C:\Windows",
            "programfiles": r"C:\Program Files",
            "temp": r"C:\Windows\Temp",
        }
        self._registry: dict[str, dict[str, Any]] = {}
        self._key_names: dict[str, str] = {}
        self._protected: set[str] = set()
        self._files: dict[str, FileInfo] = {}
        self._contents: dict[str, bytes] = {}
        self._signatures: dict[str, str] = {}
        self._locked: set[str] = set()
        self._msi_versions: dict[tuple[str, str], str] = {}
        self._services: dict[str, ServiceStatus] = {}
        self.hotfixes: set[str] = set()
        self._downloads: dict[str, tuple[bytes, dict[str, Any]]] = {}
        self.download_log: list[str] = []
        self._handlers: dict[str, ProcessHandler] = {}
        self.call_log: list[SpawnCall] = []
        self.tasks: dict[str, str] = {}
        self.trace_sessions: set[str] = set()
        self.product_version = "10.8040.14393.1000"
        self._now = 0.0

        if os_version is not None:
            self.add_file(KERNEL_IMAGE, version=os_version)
        self.set_value(CURRENT_VERSION_KEY, INSTALLATION_TYPE_VALUE, installation_type)

    @property
    def name(self) -> str:
        return "fake"

    # ── Setup helpers ───────────────────────────────────────────

    def set_value(self, key: str, name: str, value: Any) -> None:
        """Write a registry value, ignoring protection."""
        self._ensure_key(key)[name.lower()] = value

    def remove_value(self, key: str, name: str) -> None:
        self._registry.get(self._norm_key(key), {}).pop(name.lower(), None)

    def protect(self, key: str) -> None:
        """Make direct writes under ``key`` raise PermissionError."""
        self._protected.add(self._norm_key(key))

    def add_file(
        self,
        path: str | Path,
        *,
        version: OSVersion | None = None,
        product_name: str = "",
        internal_name: str = "",
        signature: str = "Valid",
        content: bytes = b"",
    ) -> None:
        norm = self._norm_path(path)
        self._files[norm] = FileInfo(
            path=str(path), version=version,
            product_name=product_name, internal_name=internal_name,
        )
        self._signatures[norm] = signature
        self._contents[norm] = content

    def lock_file(self, path: str | Path) -> None:
        """Make ``open_file`` fail as if another process held the file."""
        self._locked.add(self._norm_path(path))

    def set_msi_file_version(self, msi_path: str | Path, file_name: str, version: str) -> None:
        self._msi_versions[(self._norm_path(msi_path), file_name.lower())] = version

    def add_service(
        self,
        name: str,
        state: str = "running",
        image_path: str | None = None,
        start_type: int | None = 2,
    ) -> None:
        self._services[name.lower()] = ServiceStatus(
            name=name, state=state, image_path=image_path, start_type=start_type,
        )
        key = f"{SERVICES_KEY}\\{name}"
        if image_path is not None:
            self.set_value(key, "ImagePath", image_path)
        else:
            self.remove_value(key, "ImagePath")
        if start_type is not None:
            self.set_value(key, "Start", start_type)

    def add_download(
        self,
        url: str,
        content: bytes = b"MZ",
        *,
        signature: str = "Valid",
        **info: Any,
    ) -> None:
        """Make ``url`` downloadable; ``info`` becomes the file's version resource."""
        self._downloads[url] = (content, {"signature": signature, **info})

    def on_process(self, tool: str, handler: ProcessHandler) -> None:
        """Register a handler for an executable base name (e.g. ``"wusa.exe"``)."""
        self._handlers[tool.lower()] = handler

    def set_onboarding_state(self, value: int | None) -> None:
        if value is None:
            self.remove_value(ONBOARDING_STATUS_KEY, ONBOARDING_STATUS_VALUE)
        else:
            self.set_value(ONBOARDING_STATUS_KEY, ONBOARDING_STATUS_VALUE, value)

    def register_product(self, version: str | None = None) -> None:
        key = f"{UNINSTALL_KEY}\\{FAKE_PRODUCT_ID}"
        self.set_value(key, "DisplayName", FAKE_PRODUCT_NAME)
        self.set_value(key, "DisplayVersion", version or self.product_version)

    def calls_to(self, tool: str) -> list[SpawnCall]:
        """Recorded spawns of one executable base name."""
        return [c for c in self.call_log if c.tool == tool.lower()]

    @classmethod
    def rehearsal(cls, msi_path: Path, *, installed: bool = False, host: str = "REHEARSAL") -> FakeSystem:
        """A plausible, fully prepared Server 2016 host for ``--mock`` runs."""
        system = cls(host=host)
        engine = r"C:\ProgramData\Microsoft\Windows Defender\Platform\4.18.2207.7-0\MsMpEng.exe"
        system.add_service(PROTECTION_SERVICE, image_path=f'"{engine}"')
        system.add_file(engine, version=OSVersion(4, 18, 2207, 7))
        system.add_file(msi_path)
        system.set_msi_file_version(msi_path, ENGINE_FILE, "4.18.2207.7")
        if installed:
            system.register_product()

        def script(args: list[str]) -> int:
            onboarded = system.read_registry_value(ONBOARDING_STATUS_KEY, ONBOARDING_STATUS_VALUE)
            system.set_onboarding_state(0 if onboarded else 2)
            return 0

        system.on_process("cmd.exe", script)
        return system

    # ── Identity ────────────────────────────────────────────────

    def host_name(self) -> str:
        return self._host

    def is_administrator(self) -> bool:
        return self.administrator

    def expand_path(self, path: str) -> str:
        return _ENV_RE.sub(
            lambda m: self.environment.get(m.group(1).lower(), m.group(0)), str(path),
        )

    # ── Files ───────────────────────────────────────────────────

    def file_info(self, path: str) -> FileInfo | None:
        return self._files.get(self._norm_path(path))

    def open_file(self, path: str) -> IO[bytes]:
        norm = self._norm_path(path)
        if norm in self._locked:
            raise PermissionError(13, "The process cannot access the file", path)
        if norm not in self._files:
            raise FileNotFoundError(2, "No such file", path)
        return io.BytesIO(self._contents.get(norm, b""))

    def authenticode_status(self, path: str) -> str:
        return self._signatures.get(self._norm_path(path), "NotSigned")

    def msi_file_version(self, msi_path: str, file_name: str) -> str | None:
        return self._msi_versions.get((self._norm_path(msi_path), file_name.lower()))

    # ── Registry ────────────────────────────────────────────────

    def read_registry_value(self, key: str, name: str) -> Any | None:
        return self._registry.get(self._norm_key(key), {}).get(name.lower())

    def list_registry_subkeys(self, key: str) -> list[str]:
        prefix = self._norm_key(key) + "\\"
        children: dict[str, str] = {}
        for norm, original in self._key_names.items():
            if norm.startswith(prefix):
                child = original[len(prefix):].split("\\", 1)[0]
                children.setdefault(child.lower(), child)
        return sorted(children.values())

    def write_registry_value(self, key: str, name: str, value: int | str) -> None:
        self._check_writable(key)
        self.set_value(key, name, value)

    def delete_registry_value(self, key: str, name: str) -> None:
        self._check_writable(key)
        self.remove_value(key, name)

    def rename_registry_key(self, key: str, new_name: str) -> None:
        old = self._norm_key(key)
        if old not in self._registry:
            raise FileNotFoundError(2, "Registry key not found", key)
        parent = self._key_names[old].rsplit("\\", 1)[0]
        target = f"{parent}\\{new_name}"
        for norm in [k for k in self._registry if k == old or k.startswith(old + "\\")]:
            original = self._key_names.pop(norm)
            values = self._registry.pop(norm)
            moved = target + original[len(parent) + 1 + len(key.rsplit("\\", 1)[-1]):]
            self._registry[moved.lower()] = values
            self._key_names[moved.lower()] = moved

    def delete_registry_key(self, key: str) -> None:
        if self._norm_key(key) not in self._registry:
            raise FileNotFoundError(2, "Registry key not found", key)
        self._drop_key(key)

    # ── Services / updates ──────────────────────────────────────

    def service_status(self, name: str) -> ServiceStatus | None:
        return self._services.get(name.lower())

    def installed_hotfixes(self) -> set[str]:
        return set(self.hotfixes)

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
        call = SpawnCall(executable, tuple(args), cwd, stdin_text)
        self.call_log.append(call)

        handler = self._handlers.get(call.tool) or self._builtin(call.tool)
        result = handler(list(args)) if handler else 0
        if isinstance(result, tuple):
            code, out, err = result
            stdout.write(out.encode("utf-8"))
            stderr.write(err.encode("utf-8"))
            return code
        return result

    def download(self, url: str, dest: Path, timeout: int) -> None:
        self.download_log.append(url)
        if url not in self._downloads:
            raise ConnectionError(f"Cannot reach {url}")
        content, info = self._downloads[url]
        dest.write_bytes(content)
        info = dict(info)
        signature = info.pop("signature")
        self.add_file(dest, signature=signature, content=content, **info)

    def sleep(self, seconds: float) -> None:
        self._now += max(seconds, 0.0)

    def monotonic(self) -> float:
        return self._now

    # ── Built-in tools ──────────────────────────────────────────

    def _builtin(self, tool: str) -> ProcessHandler | None:
        return {
            "logman.exe": self._logman,
            "schtasks.exe": self._schtasks,
            "msiexec.exe": self._msiexec,
        }.get(tool)

    def _logman(self, args: list[str]) -> int:
        name = _option(args, "-n")
        if args[:2] == ["create", "trace"]:
            Path(_option(args, "-o") or "").write_bytes(b"ETL")
            self.trace_sessions.add(name or "")
            return 0
        if args[:1] == ["stop"]:
            if name not in self.trace_sessions:
                return LOGMAN_NOT_FOUND
            self.trace_sessions.discard(name)
            return 0
        return 1

    def _schtasks(self, args: list[str]) -> int:
        name = _option(args, "/TN") or ""
        if args[:1] == ["/Create"]:
            self.tasks[name] = _option(args, "/TR") or ""
            return 0
        if args[:1] == ["/Run"]:
            if name not in self.tasks:
                return 1
            return self._reg_exe(shlex.split(self.tasks[name]))
        if args[:1] == ["/Delete"]:
            return 0 if self.tasks.pop(name, None) is not None else 1
        return 1

    def _reg_exe(self, argv: list[str]) -> int:
        if len(argv) < 3 or ntpath.basename(argv[0]).lower() != "reg.exe":
            return 1
        verb, key, rest = argv[1], argv[2], argv[3:]
        name = _option(rest, "/v") or ""
        if verb == "add":
            data = _option(rest, "/d") or "0"
            self.set_value(key, name, int(data, 0) if _option(rest, "/t") == "REG_DWORD" else data)
            return 0
        if verb == "delete":
            self.remove_value(key, name)
            return 0
        return 1

    def _msiexec(self, args: list[str]) -> int:
        log = _option(args, "/l*v")
        if log:
            Path(log).write_text(f"=== Verbose logging started: {' '.join(args)} ===\n", encoding="utf-8")
        if args[:1] == ["/i"]:
            self.register_product()
        elif args[:1] == ["/x"]:
            self._drop_key(f"{UNINSTALL_KEY}\\{args[1]}")
        return 0

    # ── internals ───────────────────────────────────────────────

    def _norm_path(self, path: str | Path) -> str:
        return self.expand_path(str(path)).replace("/", "\\").lower()

    @staticmethod
    def _norm_key(key: str) -> str:
        return key.rstrip("\\").lower()

    def _ensure_key(self, key: str) -> dict[str, Any]:
        norm = self._norm_key(key)
        if norm not in self._registry:
            self._registry[norm] = {}
            self._key_names[norm] = key.rstrip("\\")
        return self._registry[norm]

    def _drop_key(self, key: str) -> None:
        norm = self._norm_key(key)
        for k in [k for k in self._registry if k == norm or k.startswith(norm + "\\")]:
            self._registry.pop(k)
            self._key_names.pop(k)

    def _check_writable(self, key: str) -> None:
        norm = self._norm_key(key)
        for protected in self._protected:
            if norm == protected or norm.startswith(protected + "\\"):
                raise PermissionError(5, "Access is denied", key)


def _option(args: list[str], flag: str) -> str | None:
    """Value following ``flag`` in an argument list (case-insensitive)."""
    lowered = [a.lower() for a in args]
    try:
        return args[lowered.index(flag.lower()) + 1]
    except (ValueError, IndexError):
        return None
