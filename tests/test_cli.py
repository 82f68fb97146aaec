"""Tests for imagegen.cli module."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from imagegen import cli
from imagegen.exceptions import CustomizeError, DependencyError
from imagegen.models import BuildRequest, Distro


class TestListDistros:
    def test_prints_all(self, capsys):
        assert cli.main(["--list-distros"]) == 0
        out = capsys.readouterr().out
        assert "debian13" in out
        assert "Ubuntu 24.04 LTS (Noble)" in out
        assert "fedora43" in out


class TestParser:
    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.distro == "debian13"
        assert args.password is None
        assert args.bootstrap is False
        assert args.refresh is False

    def test_credential_alias(self):
        args = cli.build_parser().parse_args(["--credential", "abc"])
        assert args.password == "abc"

    def test_passwd(self):
        args = cli.build_parser().parse_args(["--passwd", "abc", "--distro", "fedora43", "--bootstrap"])
        assert args.password == "abc"
        assert args.distro == "fedora43"
        assert args.bootstrap is True

    def test_dash_leading_password_with_equals_form(self):
        args = cli.build_parser().parse_args(["--passwd=-s3cret", "--distro", "debian13"])
        assert args.password == "-s3cret"

    def test_help_documents_equals_form(self):
        assert "--passwd=VALUE" in cli.build_parser().format_help()


class TestMain:
    def test_unsupported_distro_fails_before_any_work(self, tmp_path):
        cache_dir = tmp_path / "cache"
        out_dir = tmp_path / "out"
        with (
            patch("imagegen.cli.check_deps") as mock_deps,
            patch("imagegen.cli.build_image") as mock_build,
            patch("imagegen.cli.log") as mock_log,
        ):
            rc = cli.main(["--distro", "gentoo", "--cache-dir", str(cache_dir), "--output-dir", str(out_dir)])
        assert rc == 1
        mock_deps.assert_not_called()
        mock_build.assert_not_called()
        level, message = mock_log.call_args[0]
        assert level == "ERROR"
        assert "Unsupported distro 'gentoo'" in message
        assert not cache_dir.exists()
        assert not out_dir.exists()

    def test_missing_bootstrap_fails_before_deps(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with (
            patch("imagegen.cli.check_deps") as mock_deps,
            patch("imagegen.cli.build_image") as mock_build,
            patch("imagegen.cli.log") as mock_log,
        ):
            rc = cli.main(["--bootstrap", "--passwd", "x"])
        assert rc == 1
        mock_deps.assert_not_called()
        mock_build.assert_not_called()
        assert "tonynv.userdata not found" in mock_log.call_args[0][1]

    def test_dependency_error_returns_1(self):
        with (
            patch("imagegen.cli.check_deps", side_effect=DependencyError("no virt-customize")),
            patch("imagegen.cli.build_image") as mock_build,
            patch("imagegen.cli.log") as mock_log,
        ):
            rc = cli.main(["--passwd", "x"])
        assert rc == 1
        mock_build.assert_not_called()
        mock_log.assert_called_with("ERROR", "no virt-customize")

    def test_build_error_returns_1(self, capsys):
        with (
            patch("imagegen.cli.check_deps"),
            patch("imagegen.cli.build_image", side_effect=CustomizeError("virt-customize failed")),
        ):
            rc = cli.main(["--passwd", "x"])
        assert rc == 1
        assert "virt-customize failed" in capsys.readouterr().out

    def test_interrupt_returns_130(self):
        with (
            patch("imagegen.cli.check_deps"),
            patch("imagegen.cli.build_image", side_effect=KeyboardInterrupt),
        ):
            assert cli.main(["--passwd", "x"]) == 130

    def test_success_passes_request_and_prints_summary(self, tmp_path, capsys):
        out_image = tmp_path / "out" / "tonynv-ubuntu2404.qcow2"
        with (
            patch("imagegen.cli.check_deps"),
            patch("imagegen.cli.build_image", return_value=out_image) as mock_build,
        ):
            rc = cli.main(
                [
                    "--distro",
                    "ubuntu2404",
                    "--passwd",
                    "hunter2",
                    "--output-dir",
                    str(tmp_path / "out"),
                    "--cache-dir",
                    str(tmp_path / "cache"),
                    "--refresh",
                ]
            )
        assert rc == 0
        request = mock_build.call_args[0][0]
        assert isinstance(request, BuildRequest)
        assert request.distro is Distro.UBUNTU2404
        assert request.password == "hunter2"
        assert mock_build.call_args.kwargs == {
            "cache_dir": tmp_path / "cache",
            "output_dir": tmp_path / "out",
            "refresh": True,
        }
        out = capsys.readouterr().out
        assert f"Image ready: {out_image}" in out
        assert "Password: hunter2" in out
        assert "(applies to both root and tonynv users)" in out
        assert "randomly generated" not in out
        assert f"file={out_image},format=qcow2" in out

    def test_generated_password_is_printed(self, tmp_path, capsys):
        with (
            patch("imagegen.cli.check_deps"),
            patch("imagegen.config.generate_password", return_value="R4nd0mR4nd0m"),
            patch("imagegen.cli.build_image", return_value=Path("output/tonynv-debian13.qcow2")),
        ):
            rc = cli.main([])
        assert rc == 0
        out = capsys.readouterr().out
        assert "Password: R4nd0mR4nd0m" in out
        assert "randomly generated" in out

    def test_non_utf8_bootstrap_does_not_crash(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "tonynv.userdata").write_bytes(b"#!/bin/sh\necho caf\xe9\n")
        with (
            patch("imagegen.cli.check_deps"),
            patch("imagegen.cli.build_image", return_value=Path("output/tonynv-debian13.qcow2")) as mock_build,
        ):
            assert cli.main(["--bootstrap", "--passwd", "x"]) == 0
        assert mock_build.call_args[0][0].bootstrap is True

    def test_cache_dir_blocked_by_file_returns_1(self, tmp_path, capsys):
        blocker = tmp_path / "cache"
        blocker.write_text("")
        with patch("imagegen.cli.check_deps"):
            rc = cli.main(["--passwd", "x", "--cache-dir", str(blocker), "--output-dir", str(tmp_path / "out")])
        assert rc == 1
        out = capsys.readouterr().out
        assert "[ERROR]" in out
        assert "Cannot use cache directory" in out
        assert not (tmp_path / "out").exists()
