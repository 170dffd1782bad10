"""
Hardware fingerprinting — bind a secret to the machine that generated it.

The fingerprint is SHA-256 over the sorted, ``|``-joined set of whatever
hardware identifiers the host exposes. Sorting makes the digest independent
of collection order; at least two identifiers are required, otherwise the
binding would be too weak to mean anything.

Collection is best-effort: every identifier may come back empty and the
collectors never raise. Commands are fixed strings, no user input is ever
passed to a subprocess.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import socket
import subprocess
import sys
from pathlib import Path
from typing import Iterable

from shareinbox import MIN_HARDWARE_COMPONENTS
from shareinbox.errors import InsufficientHardwareEvidence

log = logging.getLogger(__name__)

_COMMAND_TIMEOUT = 5  # seconds per identifier command
_SEPARATOR = "|"

_MAC_RE = re.compile(r"([0-9a-f]{2}[:-]){5}[0-9a-f]{2}", re.IGNORECASE)
_PLACEHOLDER_SERIALS = {"Default", "None", "To be filled by O.E.M.", "0"}


def fingerprint(components: Iterable[str | None]) -> str:
    """Collapse raw identifier strings into one SHA-256 hex digest.

    Raises InsufficientHardwareEvidence if fewer than two non-empty
    components are present.
    """
    present = [c for c in components if c]
    if len(present) < MIN_HARDWARE_COMPONENTS:
        raise InsufficientHardwareEvidence(len(present), MIN_HARDWARE_COMPONENTS)

    combined = _SEPARATOR.join(sorted(present))
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def verify_fingerprint(stored: str, components: Iterable[str | None]) -> bool:
    """Recompute the fingerprint and compare against a stored digest.

    Fail-closed: any error during recomputation returns False.
    """
    try:
        current = fingerprint(components)
        return hmac.compare_digest(current, stored)
    except Exception:
        return False


# ---------------------------------------------------------------------------
# Host collection
# ---------------------------------------------------------------------------

def _run(args: list[str]) -> str:
    """Run a fixed command and return trimmed stdout, or '' on any failure."""
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=_COMMAND_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def _read(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8", errors="replace").strip()
    except OSError:
        return ""


def _wmic_value(output: str, field: str) -> str:
    match = re.search(rf"{field}=(\S+)", output)
    if match and match.group(1) not in _PLACEHOLDER_SERIALS:
        return match.group(1)
    return ""


def _cpu_id(plat: str) -> str:
    if plat == "win32":
        value = _wmic_value(_run(["wmic", "cpu", "get", "processorid", "/format:value"]), "ProcessorId")
        return value or _run(
            ["powershell", "-Command", "(Get-WmiObject Win32_Processor).ProcessorId"]
        )
    if plat == "darwin":
        output = _run(["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"])
        match = re.search(r'"IOPlatformSerialNumber"\s*=\s*"([^"]+)"', output)
        return match.group(1) if match else ""
    if plat.startswith("linux"):
        cpuinfo = _read("/proc/cpuinfo")
        relevant = [
            line for line in cpuinfo.splitlines()
            if "model name" in line or "Serial" in line
        ][:2]
        if relevant:
            return hashlib.sha256("".join(relevant).encode("utf-8")).hexdigest()[:16]
    return ""


def _disk_serial(plat: str) -> str:
    if plat == "win32":
        return _wmic_value(
            _run(["wmic", "diskdrive", "get", "serialnumber", "/format:value"]),
            "SerialNumber",
        )
    if plat == "darwin":
        output = _run(["diskutil", "info", "disk0"])
        match = (
            re.search(r"Volume UUID:\s*([A-F0-9-]+)", output, re.IGNORECASE)
            or re.search(r"Disk / Partition UUID:\s*([A-F0-9-]+)", output, re.IGNORECASE)
        )
        return match.group(1) if match else ""
    if plat.startswith("linux"):
        return (
            _read("/sys/class/block/sda/device/serial")
            or _read("/sys/class/block/nvme0n1/device/serial")
        )
    return ""


def _mac_address(plat: str) -> str:
    if plat == "win32":
        output = _run(["getmac", "/fo", "csv", "/nh"])
    elif plat == "darwin":
        output = _run(["ifconfig", "en0"])
    elif plat.startswith("linux"):
        output = _run(["ip", "link", "show"])
        # Skip the loopback's all-zero address
        output = output.replace("00:00:00:00:00:00", "")
    else:
        return ""
    match = _MAC_RE.search(output)
    return match.group(0).replace("-", ":").lower() if match else ""


def _bios_serial(plat: str) -> str:
    if plat == "win32":
        return (
            _wmic_value(_run(["wmic", "bios", "get", "serialnumber", "/format:value"]), "SerialNumber")
            or _wmic_value(
                _run(["wmic", "baseboard", "get", "serialnumber", "/format:value"]),
                "SerialNumber",
            )
        )
    if plat == "darwin":
        output = _run(["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"])
        match = re.search(r'"IOPlatformUUID"\s*=\s*"([^"]+)"', output)
        return match.group(1) if match else ""
    if plat.startswith("linux"):
        serial = _read("/sys/class/dmi/id/board_serial")
        return "" if serial in _PLACEHOLDER_SERIALS else serial
    return ""


def collect_hardware_ids(plat: str | None = None) -> dict[str, str]:
    """Gather the host's hardware identifiers.

    Returns a dict with keys cpu, disk, mac, bios, hostname, platform.
    Missing identifiers are empty strings. Never raises.
    """
    plat = plat or sys.platform
    ids = {
        "cpu": _cpu_id(plat),
        "disk": _disk_serial(plat),
        "mac": _mac_address(plat),
        "bios": _bios_serial(plat),
        "hostname": socket.gethostname() or "",
        "platform": plat,
    }
    log.debug(
        "Collected %d/%d hardware identifiers",
        sum(1 for v in ids.values() if v),
        len(ids),
    )
    return ids


def hardware_fingerprint() -> str:
    """Fingerprint of the current host. Raises InsufficientHardwareEvidence."""
    return fingerprint(collect_hardware_ids().values())
