import logging

import pytest

from powercap import Paths

CAPS = {
    "power1_cap": "150000000\n",
    "power1_cap_default": "203000000\n",
    "power1_cap_min": "75000000\n",
    "power1_cap_max": "250000000\n",
}


def make_hwmon(root, card="card0", hwmon="hwmon3", files=CAPS):
    hwmon_dir = root / "drm" / card / "device" / "hwmon" / hwmon
    hwmon_dir.mkdir(parents=True)
    for name, content in files.items():
        (hwmon_dir / name).write_text(content)
    return hwmon_dir


@pytest.fixture
def drm_paths(tmp_path):
    return Paths(drm_root=str(tmp_path / "drm"))


@pytest.fixture
def hwmon_dir(tmp_path):
    return make_hwmon(tmp_path)


@pytest.fixture(autouse=True)
def restore_root_logger():
    # drop the stderr handler powercap_cli.setup_logging installs on root
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(level)
