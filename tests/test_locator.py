"""Tests for card and hwmon discovery."""
from powercap import ErrorKind, Paths, find_card_base_path, find_hwmon_base_path, locate

from conftest import make_hwmon


class TestFindCardBasePath:
    def test_finds_card(self, tmp_path, drm_paths):
        make_hwmon(tmp_path, card="card1")
        result = find_card_base_path(drm_paths)
        assert result.ok
        assert result.value == str(tmp_path / "drm" / "card1")

    def test_ignores_non_card_entries(self, tmp_path, drm_paths):
        drm = tmp_path / "drm"
        (drm / "renderD128").mkdir(parents=True)
        (drm / "version").write_text("drm 1.1.0\n")
        (drm / "card-file").write_text("")
        result = find_card_base_path(drm_paths)
        assert result.error is ErrorKind.NOT_FOUND
        assert result.value is None
        assert result.detail == "Unable to find gpu"

    def test_missing_root_is_not_found(self, tmp_path):
        result = find_card_base_path(Paths(drm_root=str(tmp_path / "missing")))
        assert result.error is ErrorKind.NOT_FOUND

    def test_first_match_is_stable(self, tmp_path, drm_paths):
        for card in ("card0", "card1", "card2"):
            (tmp_path / "drm" / card).mkdir(parents=True)
        first = find_card_base_path(drm_paths).value
        assert all(find_card_base_path(drm_paths).value == first for _ in range(5))

    def test_custom_prefix(self, tmp_path):
        (tmp_path / "drm" / "gpu0").mkdir(parents=True)
        paths = Paths(drm_root=str(tmp_path / "drm"), card_prefix="gpu")
        assert find_card_base_path(paths).value == str(tmp_path / "drm" / "gpu0")


class TestFindHwmonBasePath:
    def test_finds_hwmon(self, tmp_path, hwmon_dir):
        card = str(tmp_path / "drm" / "card0")
        result = find_hwmon_base_path(card)
        assert result.ok
        assert result.value == str(hwmon_dir)

    def test_any_directory_name_is_accepted(self, tmp_path):
        hwmon_dir = make_hwmon(tmp_path, hwmon="sensor")
        result = find_hwmon_base_path(str(tmp_path / "drm" / "card0"))
        assert result.value == str(hwmon_dir)

    def test_empty_hwmon_dir(self, tmp_path):
        card = tmp_path / "drm" / "card0"
        (card / "device" / "hwmon").mkdir(parents=True)
        (card / "device" / "hwmon" / "README").write_text("")
        result = find_hwmon_base_path(str(card))
        assert result.error is ErrorKind.NOT_FOUND
        assert result.detail == f"Unable to find hwmon entries for {card}"

    def test_missing_hwmon_dir(self, tmp_path):
        card = tmp_path / "drm" / "card0"
        card.mkdir(parents=True)
        assert find_hwmon_base_path(str(card)).error is ErrorKind.NOT_FOUND

    def test_first_match_is_stable(self, tmp_path):
        make_hwmon(tmp_path, hwmon="hwmon1")
        (tmp_path / "drm" / "card0" / "device" / "hwmon" / "hwmon2").mkdir()
        card = str(tmp_path / "drm" / "card0")
        first = find_hwmon_base_path(card).value
        assert all(find_hwmon_base_path(card).value == first for _ in range(5))


def test_locate(tmp_path, drm_paths, hwmon_dir):
    assert locate(drm_paths).value == str(hwmon_dir)


def test_locate_without_card(tmp_path, drm_paths):
    (tmp_path / "drm").mkdir()
    assert locate(drm_paths).detail == "Unable to find gpu"
