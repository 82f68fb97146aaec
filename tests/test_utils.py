"""Tests for imagegen.utils module."""

from __future__ import annotations

import base64
import subprocess
from unittest.mock import MagicMock, patch

import pytest
import requests

from imagegen.exceptions import DownloadError
from imagegen.utils import (
    download_file,
    generate_password,
    log,
    missing_tools,
    run,
    strip_ansi,
)


class TestLog:
    def test_info_level(self, capsys):
        log("INFO", "test message")
        captured = capsys.readouterr()
        assert "[INFO]" in captured.out
        assert "test message" in captured.out

    def test_debug_suppressed_by_default(self, capsys):
        with patch("imagegen.utils._LOG_VERBOSE", False):
            log("DEBUG", "should not appear")
        assert capsys.readouterr().out == ""

    def test_debug_shown_when_verbose(self, capsys):
        with patch("imagegen.utils._LOG_VERBOSE", True):
            log("DEBUG", "visible")
        assert "visible" in capsys.readouterr().out


class TestGeneratePassword:
    def test_matches_openssl_base64_12(self):
        pw = generate_password()
        assert len(pw) == 16
        assert len(base64.b64decode(pw)) == 12

    def test_distinct_across_calls(self):
        passwords = {generate_password() for _ in range(20)}
        assert len(passwords) == 20


class TestMissingTools:
    def test_reports_only_absent(self):
        with patch("imagegen.utils.shutil.which", side_effect=lambda t: None if t == "virt-cat" else f"/usr/bin/{t}"):
            assert missing_tools(["qemu-img", "virt-cat"]) == ["virt-cat"]


class TestStripAnsi:
    def test_removes_colour_codes(self):
        assert strip_ansi("\x1b[0;32minet 10.200.0.5/24\x1b[0m") == "inet 10.200.0.5/24"


def _response(chunks, length=None):
    resp = MagicMock()
    resp.iter_content.return_value = chunks
    resp.headers = {"Content-Length": str(length)} if length is not None else {}
    resp.raise_for_status.return_value = None
    return resp


class TestDownloadFile:
    def test_writes_destination(self, tmp_path):
        dest = tmp_path / "image.qcow2"
        with patch("imagegen.utils.requests.get", return_value=_response([b"abc", b"def"], 6)):
            download_file("https://example.com/image.qcow2", dest)
        assert dest.read_bytes() == b"abcdef"
        assert [p.name for p in tmp_path.iterdir()] == ["image.qcow2"]

    def test_without_content_length(self, tmp_path):
        dest = tmp_path / "image.qcow2"
        with patch("imagegen.utils.requests.get", return_value=_response([b"abc"])):
            download_file("https://example.com/image.qcow2", dest)
        assert dest.read_bytes() == b"abc"

    def test_http_error_raises_download_error(self, tmp_path):
        resp = _response([])
        error_resp = MagicMock(status_code=404)
        resp.raise_for_status.side_effect = requests.HTTPError(response=error_resp)
        with patch("imagegen.utils.requests.get", return_value=resp):
            with pytest.raises(DownloadError, match="404"):
                download_file("https://example.com/missing.qcow2", tmp_path / "missing.qcow2")
        assert list(tmp_path.iterdir()) == []

    def test_connection_error_raises_download_error(self, tmp_path):
        with patch("imagegen.utils.requests.get", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(DownloadError, match="Failed to download"):
                download_file("https://example.com/a.qcow2", tmp_path / "a.qcow2")

    def test_truncated_transfer_leaves_nothing_behind(self, tmp_path):
        dest = tmp_path / "image.qcow2"
        with patch("imagegen.utils.requests.get", return_value=_response([b"abc"], 10)):
            with pytest.raises(DownloadError, match="Incomplete download"):
                download_file("https://example.com/image.qcow2", dest)
        assert list(tmp_path.iterdir()) == []

    def test_stream_error_midway_cleans_up(self, tmp_path):
        dest = tmp_path / "image.qcow2"
        resp = _response([])
        resp.iter_content.side_effect = requests.ConnectionError("reset")
        with patch("imagegen.utils.requests.get", return_value=resp):
            with pytest.raises(DownloadError):
                download_file("https://example.com/image.qcow2", dest)
        assert list(tmp_path.iterdir()) == []

    def test_unwritable_destination_raises_download_error(self, tmp_path):
        resp = _response([b"abc"], 3)
        dest = tmp_path / "missing-dir" / "image.qcow2"
        with patch("imagegen.utils.requests.get", return_value=resp):
            with pytest.raises(DownloadError, match="Cannot write to"):
                download_file("https://example.com/image.qcow2", dest)
        resp.close.assert_called_once()
        assert list(tmp_path.iterdir()) == []


class TestRun:
    def test_passes_through_to_subprocess(self):
        with patch("imagegen.utils.subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess(["true"], 0)
            result = run(["true"], capture_output=True)
        mock_run.assert_called_once_with(["true"], check=True, text=True, capture_output=True)
        assert result.returncode == 0
