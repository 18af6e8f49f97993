from pathlib import Path

import pytest

from kubeshepherd.transport.credentials import (
    auto_discover_key,
    check_key_permissions,
    load_password_file,
)


def test_auto_discover_prefers_ed25519(tmp_path: Path):
    ssh = tmp_path / ".ssh"
    ssh.mkdir()
    (ssh / "id_rsa").write_text("rsa")
    (ssh / "id_ed25519").write_text("ed")
    assert auto_discover_key(home=tmp_path) == ssh / "id_ed25519"


def test_auto_discover_none(tmp_path: Path):
    assert auto_discover_key(home=tmp_path) is None


def test_key_permissions_warn_only(tmp_path: Path):
    key = tmp_path / "id_rsa"
    key.write_text("k")
    key.chmod(0o644)
    assert check_key_permissions(key) is False
    key.chmod(0o600)
    assert check_key_permissions(key) is True


def test_password_file(tmp_path: Path):
    pw = tmp_path / "pw"
    pw.write_text("s3cret\n")
    pw.chmod(0o600)
    assert load_password_file(pw) == "s3cret"

    pw.chmod(0o644)
    with pytest.raises(ValueError, match="permissions"):
        load_password_file(pw)

    with pytest.raises(ValueError, match="not found"):
        load_password_file(tmp_path / "missing")
