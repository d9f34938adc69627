"""Tests for CLI option parsing and commands."""

import json

import pytest
import typer
from typer.testing import CliRunner

from gba_multiboot import cli
from gba_multiboot.core.results import OperationResult

runner = CliRunner()


class TestParseBitrateCore:
    """Test the core parse_bitrate in core/parsing.py (raises ValueError)."""

    def get_parse_bitrate_core(self):
        from gba_multiboot.core.parsing import parse_bitrate
        return parse_bitrate

    def test_core_canonical_names(self):
        parse_bitrate = self.get_parse_bitrate_core()
        assert parse_bitrate("125k") == "125k"
        assert parse_bitrate("2.6M") == "2.6M"

    def test_core_case_and_suffix(self):
        parse_bitrate = self.get_parse_bitrate_core()
        assert parse_bitrate("125K") == "125k"
        assert parse_bitrate("1mhz") == "1M"
        assert parse_bitrate(" 250kHz ") == "250k"

    def test_core_invalid_raises_valueerror(self):
        parse_bitrate = self.get_parse_bitrate_core()
        with pytest.raises(ValueError):
            parse_bitrate("115200")
        with pytest.raises(ValueError):
            parse_bitrate("")


class TestParseBitrateCli:
    """CLI wrapper converts ValueError to typer.BadParameter."""

    def test_valid(self):
        assert cli.parse_bitrate("8m") == "8M"

    def test_invalid_raises_bad_parameter(self):
        with pytest.raises(typer.BadParameter):
            cli.parse_bitrate("fast")


class TestParseMaxPolls:
    def test_none_and_zero_mean_unbounded(self):
        assert cli.parse_max_polls(None) is None
        assert cli.parse_max_polls(0) is None

    def test_positive(self):
        assert cli.parse_max_polls(500) == 500

    def test_negative_raises_bad_parameter(self):
        with pytest.raises(typer.BadParameter):
            cli.parse_max_polls(-1)


class TestInfoCommand:
    def test_info_table(self, tmp_path):
        path = tmp_path / "demo.mb"
        path.write_bytes(bytes(1000))

        result = runner.invoke(cli.app, ["info", str(path)])

        assert result.exit_code == 0
        assert "1,008 bytes" in result.output
        assert "0x00000098" in result.output

    def test_info_json(self, tmp_path):
        path = tmp_path / "demo.mb"
        path.write_bytes(bytes(1000))

        result = runner.invoke(cli.app, ["info", str(path), "--json"])

        assert result.exit_code == 0
        details = json.loads(result.output)
        assert details["padded_size"] == 1008

    def test_info_too_large(self, tmp_path):
        path = tmp_path / "big.mb"
        path.write_bytes(bytes(262145))

        result = runner.invoke(cli.app, ["info", str(path)])

        assert result.exit_code == 1
        assert "256 KiB" in result.output


class TestUploadCommand:
    def test_upload_success(self, tmp_path, monkeypatch):
        path = tmp_path / "demo.mb"
        path.write_bytes(bytes(1000))
        seen = {}

        def fake_upload(port, image, **kwargs):
            seen.update(kwargs, port=port, image=image)
            kwargs["progress_cb"](192, 1008)
            return OperationResult(ok=True, operation="upload", port=port,
                                   bytes_len=1000, padded_len=1008, checksum=0x1234)

        monkeypatch.setattr(cli, "upload_firmware", fake_upload)

        result = runner.invoke(
            cli.app,
            ["upload", str(path), "--port", "/dev/ttyUSB0", "--bitrate", "250K", "--max-polls", "100"],
        )

        assert result.exit_code == 0, result.output
        assert "Upload complete" in result.output
        assert "0x1234" in result.output
        assert seen["port"] == "/dev/ttyUSB0"
        assert seen["bitrate"] == "250k"
        assert seen["poll"].max_attempts == 100

    def test_upload_failure_exits_1(self, tmp_path, monkeypatch):
        path = tmp_path / "demo.mb"
        path.write_bytes(bytes(1000))

        def fake_upload(port, image, **kwargs):
            return OperationResult.failure("upload", "No BBIO1 from /dev/ttyUSB0", port=port)

        monkeypatch.setattr(cli, "upload_firmware", fake_upload)

        result = runner.invoke(cli.app, ["upload", str(path), "--port", "/dev/ttyUSB0"])

        assert result.exit_code == 1
        assert "No BBIO1" in result.output

    def test_upload_bad_bitrate(self, tmp_path):
        path = tmp_path / "demo.mb"
        path.write_bytes(bytes(1000))

        result = runner.invoke(
            cli.app, ["upload", str(path), "--port", "/dev/ttyUSB0", "--bitrate", "9600"]
        )

        assert result.exit_code != 0
