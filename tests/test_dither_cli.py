"""Tests for the command-line front end."""

import json
from pathlib import Path

import pytest
from PIL import Image

import dither_cli
from config_manager import ConfigManager
from dither_cli import ConfigValidationError, detect_mode, main, validate_config


@pytest.fixture
def settings(tmp_path):
    return ConfigManager(str(tmp_path / "settings.json"))


@pytest.fixture
def source_image(tmp_path):
    path = tmp_path / "photo.png"
    image = Image.new('RGB', (12, 8))
    for x in range(12):
        for y in range(8):
            image.putpixel((x, y), (x * 20, y * 30, 128))
    image.save(path)
    return path


def write_job(tmp_path, job):
    path = tmp_path / "job.json"
    path.write_text(json.dumps(job))
    return path


def colors_in(path):
    with Image.open(path) as img:
        return {c[:3] for _, c in img.convert('RGBA').getcolors(1 << 16)}


class TestValidateConfig:
    def test_missing_required_fields(self, tmp_path, settings):
        with pytest.raises(ConfigValidationError) as exc:
            validate_config({}, tmp_path / "job.json", settings)
        assert "'input'" in str(exc.value)
        assert "'output'" in str(exc.value)

    def test_collects_every_error(self, tmp_path, settings, source_image):
        job = {
            "input": str(source_image),
            "output": "out.png",
            "mode": "video",
            "dithering": {"algorithm": "atkinson", "num_workers": 0},
            "palette": {"id": "ega", "threshold": 300},
            "scale": {"percent": 0},
            "final_resize": {"multiplier": -1},
        }
        with pytest.raises(ConfigValidationError) as exc:
            validate_config(job, tmp_path / "job.json", settings)
        message = str(exc.value)
        for fragment in ("mode", "algorithm", "num_workers", "palette", "threshold",
                         "scale.percent", "multiplier"):
            assert fragment in message

    def test_defaults_come_from_settings(self, tmp_path, settings, source_image):
        settings.set("defaults", "palette", value="cga")
        settings.set("defaults", "algorithm", value="bayer")
        config = validate_config({"input": str(source_image), "output": "out.png"},
                                 tmp_path / "job.json", settings)
        assert config["palette"] == {"id": "cga", "threshold": 128}
        assert config["dithering"] == {"algorithm": "bayer", "num_workers": 1}
        assert config["scale"] == {"percent": 100}
        assert config["final_resize"] == {"enabled": False, "multiplier": 2}

    def test_relative_paths_resolve_against_job_file(self, tmp_path, settings, source_image):
        config = validate_config({"input": "photo.png", "output": "out/result.png"},
                                 tmp_path / "job.json", settings)
        assert Path(config["input"]) == source_image.resolve()
        assert Path(config["output"]) == (tmp_path / "out" / "result.png").resolve()

    def test_missing_input_file(self, tmp_path, settings):
        with pytest.raises(ConfigValidationError):
            validate_config({"input": "nope.png", "output": "out.png"}, tmp_path / "job.json", settings)

    def test_paths_must_be_strings(self, tmp_path, settings):
        with pytest.raises(ConfigValidationError) as exc:
            validate_config({"input": 5, "output": 6}, tmp_path / "job.json", settings)
        assert "'input' must be a path string" in str(exc.value)
        assert "'output' must be a path string" in str(exc.value)

    def test_mode_must_match_input(self, tmp_path, settings, source_image):
        with pytest.raises(ConfigValidationError):
            validate_config({"input": str(source_image), "output": "out", "mode": "folder"},
                            tmp_path / "job.json", settings)
        with pytest.raises(ConfigValidationError):
            validate_config({"input": str(tmp_path), "output": "o.png", "mode": "image"},
                            tmp_path / "job.json", settings)

    def test_threshold_must_be_integer(self, tmp_path, settings, source_image):
        job = {"input": str(source_image), "output": "o.png", "palette": {"threshold": 12.5}}
        with pytest.raises(ConfigValidationError):
            validate_config(job, tmp_path / "job.json", settings)


class TestDetectMode:
    def test_detect_mode(self, tmp_path, source_image):
        assert detect_mode(tmp_path) == "folder"
        assert detect_mode(source_image) == "image"
        with pytest.raises(ConfigValidationError):
            detect_mode(tmp_path / "clip.mp4")


class TestMain:
    def run(self, *argv):
        with pytest.raises(SystemExit) as exc:
            main(list(argv))
        return exc.value.code

    def test_single_image_monochrome(self, tmp_path, source_image):
        output = tmp_path / "out" / "mono.png"
        job = write_job(tmp_path, {
            "input": str(source_image),
            "output": str(output),
            "dithering": {"algorithm": "floyd-steinberg"},
            "palette": {"id": "1bit", "threshold": 128},
        })
        assert self.run(str(job), "--quiet", "--settings", str(tmp_path / "s.json")) == 0
        assert output.exists()
        assert colors_in(output) <= {(0, 0, 0), (255, 255, 255)}

    def test_scale_and_final_resize(self, tmp_path, source_image):
        output = tmp_path / "cga.png"
        job = write_job(tmp_path, {
            "input": str(source_image),
            "output": str(output),
            "dithering": {"algorithm": "bayer"},
            "palette": {"id": "cga"},
            "scale": {"percent": 50},
            "final_resize": {"enabled": True, "multiplier": 3},
        })
        assert self.run(str(job), "-q", "--settings", str(tmp_path / "s.json")) == 0
        with Image.open(output) as img:
            assert img.size == (18, 12)
        assert colors_in(output) <= {(0, 0, 0), (85, 255, 255), (255, 85, 255), (255, 255, 255)}

    def test_folder_mode(self, tmp_path, source_image):
        folder = tmp_path / "frames"
        folder.mkdir()
        for name in ("a.png", "b.png"):
            Image.new('RGB', (5, 5), (100, 150, 200)).save(folder / name)
        (folder / "readme.txt").write_text("skip me")
        out_dir = tmp_path / "dithered"
        job = write_job(tmp_path, {
            "input": str(folder),
            "output": str(out_dir),
            "dithering": {"algorithm": "ordered"},
            "palette": {"id": "websafe"},
        })
        assert self.run(str(job), "-q", "--settings", str(tmp_path / "s.json")) == 0
        assert sorted(p.name for p in out_dir.iterdir()) == ["a.png", "b.png"]

    def test_successful_run_is_recorded(self, tmp_path, source_image):
        settings_path = tmp_path / "s.json"
        output = tmp_path / "out.png"
        job = write_job(tmp_path, {"input": str(source_image), "output": str(output)})
        assert self.run(str(job), "-q", "--settings", str(settings_path)) == 0
        saved = ConfigManager(str(settings_path))
        assert saved.get("recent_files") == [str(output)]
        assert saved.get_last_path("image") == str(tmp_path)

    def test_invalid_job_exits_with_error(self, tmp_path, source_image):
        job = write_job(tmp_path, {"input": str(source_image), "output": "o.png",
                                   "palette": {"id": "ega"}})
        assert self.run(str(job), "-q", "--settings", str(tmp_path / "s.json")) == 1

    def test_folder_mode_with_file_input_fails(self, tmp_path, source_image):
        job = write_job(tmp_path, {"input": str(source_image), "output": str(tmp_path / "out"),
                                   "mode": "folder"})
        assert self.run(str(job), "-q", "--settings", str(tmp_path / "s.json")) == 1

    def test_non_string_paths_fail(self, tmp_path):
        job = write_job(tmp_path, {"input": 5, "output": 6})
        assert self.run(str(job), "-q", "--settings", str(tmp_path / "s.json")) == 1

    def test_broken_json(self, tmp_path):
        job = tmp_path / "job.json"
        job.write_text("{oops")
        assert self.run(str(job), "-q", "--settings", str(tmp_path / "s.json")) == 1

    def test_unreadable_image_fails(self, tmp_path):
        bad = tmp_path / "bad.png"
        bad.write_bytes(b"not an image")
        job = write_job(tmp_path, {"input": str(bad), "output": str(tmp_path / "o.png")})
        assert self.run(str(job), "-q", "--settings", str(tmp_path / "s.json")) == 1

    def test_missing_job_file(self, tmp_path):
        assert self.run(str(tmp_path / "nope.json"), "-q") == 1

    def test_no_job_file(self):
        assert self.run("-q") == 1

    def test_help_and_example(self, capsys):
        assert self.run("--help") == 0
        assert "floyd-steinberg" in capsys.readouterr().out
        assert self.run("--example-config") == 0
        assert "threshold" in capsys.readouterr().out


def test_process_folder_reports_unlistable_input(tmp_path, source_image):
    config = {"input": str(source_image), "output": str(tmp_path / "out")}
    assert dither_cli.process_folder(config) is False


def test_process_single_image_reports_failure(tmp_path):
    config = {
        "input": str(tmp_path / "missing.png"),
        "output": str(tmp_path / "o.png"),
        "dithering": {"algorithm": "bayer", "num_workers": 1},
        "palette": {"id": "cga", "threshold": 128},
        "scale": {"percent": 100},
        "final_resize": {"enabled": False, "multiplier": 2},
    }
    assert dither_cli.process_single_image(config) is False
