#!/usr/bin/env python3

import argparse
import json
import logging
import logging.handlers
import os
import sys

import powercap
from powercap import Action, Paths

CONFIG_PATH = "/etc/powercap/config.json"

EXIT_OK = 0
EXIT_NOT_FOUND = 1
# A failed read or write is an error too, so the boot unit reports it.
EXIT_FAILED = 2

log = logging.getLogger("powercap")


def load_config(path: str = CONFIG_PATH) -> dict:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r") as f:
            config = json.load(f)
    except (OSError, ValueError) as e:
        log.error(f"Failed to load config {path}: {e}")
        return {}
    if not isinstance(config, dict):
        log.error(f"Ignoring config {path}: expected a JSON object")
        return {}
    return config


def _config_value(config: dict, key: str, default, kind):
    value = config.get(key, default)
    # bool is an int subclass, compare types exactly
    if type(value) is not kind:
        log.error(f"Ignoring config {key}={value!r}: expected {kind.__name__}")
        return default
    return value


def paths_from_config(config: dict) -> Paths:
    defaults = powercap.DEFAULT_PATHS
    return Paths(
        drm_root=_config_value(config, "drm_root", defaults.drm_root, str),
        hwmon_subdir=_config_value(config, "hwmon_subdir", defaults.hwmon_subdir, str),
        card_prefix=_config_value(config, "card_prefix", defaults.card_prefix, str),
    )


def sudo_from_config(config: dict) -> bool:
    return _config_value(config, "use_sudo", False, bool)


def setup_logging(verbose: bool = False, syslog: bool = False) -> None:
    if syslog:
        handler = logging.handlers.SysLogHandler(
            address="/dev/log", facility=logging.handlers.SysLogHandler.LOG_DAEMON
        )
        handler.setFormatter(logging.Formatter("powercap: [%(levelname)s] %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        handlers=[handler],
        force=True,
    )


def resolve_action(args) -> Action:
    # --default beats --max beats --min
    if args.default:
        return Action.RESTORE_DEFAULT
    if args.max:
        return Action.SET_TO_MAX
    return Action.SET_TO_MIN


def list_power_caps(paths: Paths) -> int:
    card = powercap.find_card_base_path(paths)
    if not card.ok:
        log.error(card.detail)
        return EXIT_NOT_FOUND

    hwmon = powercap.find_hwmon_base_path(card.value, paths)
    if not hwmon.ok:
        log.error(hwmon.detail)
        return EXIT_NOT_FOUND

    print(f"Device: {card.value}")
    print(f"  hwmon: {hwmon.value}")
    for name, value in powercap.read_power_caps(hwmon.value).items():
        print(f"  {name}: {'n/a' if value is None else powercap.format_watts(value)}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="powercap",
        description="Set power-limits on AMD GPUs.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="Values are read from and written to the hwmon sysfs interface.\n"
        "Writing power1_cap typically requires root permissions.",
    )
    parser.add_argument(
        "--min",
        action="store_true",
        help="Set power limits to minimum (default)",
    )
    parser.add_argument(
        "--max",
        action="store_true",
        help="Set power limits to maximum",
    )
    parser.add_argument(
        "--default",
        action="store_true",
        help="Restore driver default value",
    )
    parser.add_argument(
        "-l",
        "--list",
        action="store_true",
        help="Show the current and reference power caps without writing.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable extra messages",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=CONFIG_PATH,
        metavar="PATH",
        help=f"JSON configuration file (default: {CONFIG_PATH})",
    )
    parser.add_argument(
        "--sudo",
        action="store_true",
        help="Retry the write through 'sudo tee' when permission is denied",
    )
    parser.add_argument(
        "--syslog",
        action="store_true",
        help="Log to syslog instead of stderr (for the boot service)",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.syslog)

    config = load_config(args.config)
    paths = paths_from_config(config)
    use_sudo = args.sudo or sudo_from_config(config)

    if args.list:
        return list_power_caps(paths)

    action = resolve_action(args)
    if args.verbose:
        print(f"Setting power-target to {action.value}...")

    hwmon = powercap.locate(paths)
    if not hwmon.ok:
        log.error(hwmon.detail)
        return EXIT_NOT_FOUND

    result = powercap.apply_power_cap(hwmon.value, action, use_sudo)
    if not result.ok:
        log.error(f"Could not write: {result.detail}")
        return EXIT_FAILED

    print(f"Set power cap to {powercap.format_watts(result.value)} ({action.value})")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
