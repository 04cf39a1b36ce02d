#!/usr/bin/env python3
"""Locate the first DRM card's hwmon directory and set its power cap.

The same thing can be done from a shell:

    HWMON=/sys/class/drm/card1/device/hwmon/hwmon3
    cat $HWMON/power1_cap_min | tee $HWMON/power1_cap
"""

import enum
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional, Union

log = logging.getLogger("powercap")

DRM_PATH = "/sys/class/drm"
HWMON_SUBDIR = "device/hwmon"
CARD_PREFIX = "card"

CAP_FILE = "power1_cap"
U64_MAX = 2**64 - 1


class Action(enum.Enum):
    RESTORE_DEFAULT = "default"
    SET_TO_MIN = "minimal"
    SET_TO_MAX = "maximal"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "Action":
        # Anything unknown falls back to the minimum.
        aliases = {
            "default": cls.RESTORE_DEFAULT,
            "min": cls.SET_TO_MIN,
            "minimal": cls.SET_TO_MIN,
            "max": cls.SET_TO_MAX,
            "maximal": cls.SET_TO_MAX,
        }
        return aliases.get((name or "").strip().lower(), cls.SET_TO_MIN)


REFERENCE_FILES = {
    Action.RESTORE_DEFAULT: "power1_cap_default",
    Action.SET_TO_MIN: "power1_cap_min",
    Action.SET_TO_MAX: "power1_cap_max",
}


class ErrorKind(enum.Enum):
    NOT_FOUND = "not found"
    PARSE_ERROR = "parse error"
    NO_DATA = "no data"
    PERMISSION_DENIED = "permission denied"
    IO_ERROR = "I/O error"


@dataclass(frozen=True)
class Result:
    value: Union[int, str, None] = None
    error: Optional[ErrorKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def fail(cls, error: ErrorKind, detail: str = "") -> "Result":
        return cls(error=error, detail=detail or error.value)


@dataclass(frozen=True)
class Paths:
    drm_root: str = DRM_PATH
    hwmon_subdir: str = HWMON_SUBDIR
    card_prefix: str = CARD_PREFIX


DEFAULT_PATHS = Paths()


def _os_error_kind(e: OSError) -> ErrorKind:
    if isinstance(e, PermissionError):
        return ErrorKind.PERMISSION_DENIED
    if isinstance(e, (FileNotFoundError, NotADirectoryError)):
        return ErrorKind.NOT_FOUND
    return ErrorKind.IO_ERROR


def _first_directory(path, prefix=""):
    # Plain scandir order, the first hit wins.
    with os.scandir(path) as entries:
        for entry in entries:
            if entry.is_dir() and entry.name.startswith(prefix):
                return entry.path
    return None


def find_card_base_path(paths: Paths = DEFAULT_PATHS) -> Result:
    """Return the first ``card*`` directory under the DRM class root."""
    try:
        card = _first_directory(paths.drm_root, paths.card_prefix)
    except OSError as e:
        log.debug(f"Cannot list {paths.drm_root}: {e}")
        card = None

    if card is None:
        return Result.fail(ErrorKind.NOT_FOUND, "Unable to find gpu")
    return Result(value=card)


def find_hwmon_base_path(device_path: str, paths: Paths = DEFAULT_PATHS) -> Result:
    """Return the first directory below ``<device_path>/device/hwmon``."""
    base_path = os.path.join(device_path, paths.hwmon_subdir)
    try:
        hwmon = _first_directory(base_path)
    except OSError as e:
        log.debug(f"Cannot list {base_path}: {e}")
        hwmon = None

    if hwmon is None:
        return Result.fail(
            ErrorKind.NOT_FOUND, f"Unable to find hwmon entries for {device_path}"
        )
    return Result(value=hwmon)


def reference_file(action: Action) -> str:
    return REFERENCE_FILES[action]


def parse_u64(text: str) -> int:
    value = text.strip()
    if not (value.isascii() and value.isdigit()):
        raise ValueError(f"invalid literal for an unsigned decimal: {value!r}")
    num = int(value, 10)
    if num > U64_MAX:
        raise ValueError(f"{value} does not fit in 64 bits")
    return num


def format_watts(microwatts: int) -> str:
    watts = microwatts / 1_000_000
    if watts == int(watts):
        return f"{int(watts)} W"
    return f"{watts:g} W"


def read_value(path: str, quiet: bool = False) -> Result:
    """Read the first line of ``path`` as an unsigned 64 bit integer."""
    try:
        # undecodable bytes end up as U+FFFD and fail the digit check
        with open(path, "r", errors="replace") as f:
            line = f.readline()
    except OSError as e:
        if not quiet:
            log.error(f"Unable to read {path}: {e.strerror or e}")
        return Result.fail(_os_error_kind(e), f"{path}: {e.strerror or e}")

    try:
        return Result(value=parse_u64(line))
    except ValueError as e:
        if not quiet:
            log.error(f"Unable to convert {line.strip()!r} to unsigned value: {e}")
        return Result.fail(ErrorKind.PARSE_ERROR, f"{path}: {e}")


def _sudo_write(path: str, value: int) -> Result:
    try:
        subprocess.run(
            ["sudo", "tee", path],
            input=str(value),
            text=True,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError:
        return Result.fail(
            ErrorKind.PERMISSION_DENIED,
            f"'sudo' or 'tee' command not found, cannot write to {path}",
        )
    except subprocess.CalledProcessError as e:
        error_message = e.stderr.strip() if e.stderr else "Unknown error"
        return Result.fail(
            ErrorKind.PERMISSION_DENIED, f"sudo write to {path} failed: {error_message}"
        )
    return Result(value=value)


def write_value(
    path: str, value: Union[int, Result, None], use_sudo: bool = False
) -> Result:
    """Write ``value`` as decimal text to ``path``, truncating it first.

    ``value`` may be a failed :class:`Result` from :func:`read_value`, which is
    treated the same as ``None``: nothing is written and ``NO_DATA`` is returned.
    """
    if isinstance(value, Result):
        value = value.value if value.ok else None
    if value is None:
        return Result.fail(ErrorKind.NO_DATA, "No data available")

    log.info(f"Trying to write {value // 1000} mW to {path}...")
    try:
        with open(path, "w") as f:
            f.write(str(value))
    except PermissionError as e:
        if use_sudo:
            log.info(f"Permission denied on {path}, retrying with sudo")
            return _sudo_write(path, value)
        return Result.fail(ErrorKind.PERMISSION_DENIED, e.strerror or str(e))
    except OSError as e:
        return Result.fail(_os_error_kind(e), e.strerror or str(e))
    return Result(value=value)


def apply_power_cap(hwmon_path: str, action: Action, use_sudo: bool = False) -> Result:
    source = os.path.join(hwmon_path, reference_file(action))
    target = read_value(source)
    return write_value(os.path.join(hwmon_path, CAP_FILE), target, use_sudo)


def locate(paths: Paths = DEFAULT_PATHS) -> Result:
    """Resolve the hwmon directory of the first card, or a NOT_FOUND result."""
    card = find_card_base_path(paths)
    if not card.ok:
        return card
    return find_hwmon_base_path(card.value, paths)


def apply(action: Action, paths: Paths = DEFAULT_PATHS, use_sudo: bool = False) -> Result:
    hwmon = locate(paths)
    if not hwmon.ok:
        return hwmon
    return apply_power_cap(hwmon.value, action, use_sudo)


def read_power_caps(hwmon_path: str) -> dict:
    caps = {}
    for name in (CAP_FILE, *REFERENCE_FILES.values()):
        result = read_value(os.path.join(hwmon_path, name), quiet=True)
        caps[name] = result.value if result.ok else None
    return caps
