"""
L0 Data — event-trace providers captured during a run.

Each entry becomes one line of the logman provider file:
``{GUID} FLAGS LEVEL``.
"""

from __future__ import annotations

from typing import NamedTuple


class TraceProvider(NamedTuple):
    name: str
    guid: str
    flags: int = 0xFFFFFFFF
    level: int = 0xFF


TRACE_PROVIDERS: tuple[TraceProvider, ...] = (
    TraceProvider("Microsoft-Windows-Windows Defender", "11CD958A-C507-4EF3-B3F2-5FD9DFBD2C78"),
    TraceProvider("Microsoft-Windows-Sense", "CB2FF72D-D4E4-585D-33F9-F3A395C40BE7"),
    TraceProvider("Microsoft-Antimalware-Engine", "0A002690-3839-4E3A-B3B6-96D8DF868D99"),
    TraceProvider("Microsoft-Antimalware-Service", "751EF305-6C6E-4FED-B847-02EF79D26AEF"),
    TraceProvider("Microsoft-Antimalware-RTP", "8E92DEEF-5E17-413B-B927-59B2F06A3CFC"),
    TraceProvider("Microsoft-Antimalware-Protection", "E4B70372-261F-4C54-8FA6-A5A7914D73DA"),
)

PROVIDER_FILE_HEADER = "# {PROVIDER_GUID}<space>FLAGS<space>LEVEL"
