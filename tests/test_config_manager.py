"""Tests for the preferences store."""

import json

from config_manager import ConfigManager


class TestConfigManager:
    def test_defaults_without_file(self, tmp_path):
        path = tmp_path / "settings.json"
        config = ConfigManager(str(path))
        assert config.get("defaults", "algorithm") == "floyd-steinberg"
        assert config.get("defaults", "palette") == "1bit"
        assert config.get("defaults", "threshold") == 128
        assert not path.exists()

    def test_file_is_merged_over_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"defaults": {"palette": "cga"}, "extra": 1}))
        config = ConfigManager(str(path))
        assert config.get("defaults", "palette") == "cga"
        assert config.get("defaults", "threshold") == 128
        assert config.get("extra") is None

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        assert ConfigManager(str(path)).get("defaults", "scale") == 100

        path.write_text("[1, 2, 3]")
        assert ConfigManager(str(path)).get("defaults", "scale") == 100

    def test_defaults_are_not_shared(self, tmp_path):
        first = ConfigManager(str(tmp_path / "a.json"))
        first.set("defaults", "threshold", value=10)
        first.add_recent_file("x.png")
        second = ConfigManager(str(tmp_path / "b.json"))
        assert second.get("defaults", "threshold") == 128
        assert second.get("recent_files") == []
        assert ConfigManager.DEFAULT_CONFIG["recent_files"] == []

    def test_get_and_set_nested(self, tmp_path):
        config = ConfigManager(str(tmp_path / "s.json"))
        config.set("new", "deep", "key", value=5)
        assert config.get("new", "deep", "key") == 5
        assert config.get("missing", "key", default="x") == "x"
        config.set(value=1)
        assert config.get("new", "deep", "key") == 5

    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "s.json"
        config = ConfigManager(str(path))
        config.set("defaults", "algorithm", value="bayer")
        config.update_last_path("save", str(tmp_path / "out" / "img.png"))
        assert config.save()

        reloaded = ConfigManager(str(path))
        assert reloaded.get("defaults", "algorithm") == "bayer"
        assert reloaded.get_last_path("save") == str(tmp_path / "out")

    def test_save_failure_is_reported(self, tmp_path):
        config = ConfigManager(str(tmp_path / "missing_dir" / "s.json"))
        assert config.save() is False

    def test_recent_files(self, tmp_path):
        config = ConfigManager(str(tmp_path / "s.json"))
        files = []
        for i in range(4):
            f = tmp_path / f"{i}.png"
            f.write_bytes(b"")
            files.append(str(f))
            config.add_recent_file(str(f), max_recent=3)
        config.add_recent_file(files[2], max_recent=3)

        assert config.get("recent_files") == [files[2], files[3], files[1]]

        (tmp_path / "3.png").unlink()
        assert config.get_recent_files() == [files[2], files[1]]

        config.clear_recent_files()
        assert config.get_recent_files() == []
