"""Shared test fixtures for tonynv-image."""

from __future__ import annotations

import pytest

from imagegen.models import BuildRequest, Distro


@pytest.fixture
def make_request():
    """Factory for BuildRequest objects with test defaults."""

    def _make(distro=Distro.DEBIAN13, password="x", bootstrap=False, bootstrap_path=None):
        return BuildRequest(
            distro=distro,
            password=password,
            bootstrap=bootstrap,
            bootstrap_path=bootstrap_path,
        )

    return _make


@pytest.fixture
def bootstrap_file(tmp_path):
    """Write a bootstrap file into tmp_path and return its path."""

    def _write(content: str, name: str = "tonynv.userdata"):
        path = tmp_path / name
        path.write_text(content)
        return path

    return _write
