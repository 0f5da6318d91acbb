"""
TagCache — Credential File Tests
"""

from pathlib import Path

import pytest

from tagcache.config import default_search_paths, load_config, load_credentials
from tagcache.config.credentials import CREDENTIAL_FILENAME


def test_first_existing_file_wins(tmp_path: Path, credential_file: Path) -> None:
    other = tmp_path / "other" / CREDENTIAL_FILENAME
    other.parent.mkdir()
    other.write_text("username=other\npassword=other\n", encoding="utf-8")

    credentials = load_credentials([tmp_path / "missing.txt", credential_file, other])

    assert credentials.found
    assert credentials.username == "admin"
    assert credentials.password == "s3cret"
    assert credentials.source == credential_file


def test_no_file_found(tmp_path: Path) -> None:
    credentials = load_credentials([tmp_path / "nope.txt"])

    assert not credentials.found
    assert credentials.username is None
    assert credentials.password is None


def test_partial_file(tmp_path: Path) -> None:
    path = tmp_path / CREDENTIAL_FILENAME
    path.write_text("username=admin\n", encoding="utf-8")

    credentials = load_credentials([path])

    assert credentials.found
    assert credentials.username == "admin"
    assert credentials.password is None


def test_default_search_paths_start_with_cwd(tmp_path: Path) -> None:
    paths = default_search_paths(cwd=tmp_path)

    assert paths[0] == tmp_path / CREDENTIAL_FILENAME
    assert len(paths) == len(set(paths))


def test_load_config_reads_credential_file_from_cwd(
    tmp_path: Path, credential_file: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config.auth.username == "admin"
    assert config.auth.password == "s3cret"
    assert "s3cret" not in repr(config.auth)
