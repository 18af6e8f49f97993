from pathlib import Path
import textwrap

import pytest
from pydantic import ValidationError

from kubeshepherd.checkpoint.store import DEFAULT_STATE_DIR
from kubeshepherd.config.loader import load_config
from kubeshepherd.transport.context import HostKeyPolicy


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("KUBESHEPHERD_STATE_DIR", "KUBESHEPHERD_BUNDLE_ROOT", "KUBESHEPHERD_SECRETS_FILE"):
        monkeypatch.delenv(var, raising=False)


def test_defaults_without_file():
    cfg = load_config()
    assert cfg.ssh.user == "root"
    assert cfg.ssh.port == 22
    assert cfg.ssh.host_key_policy is HostKeyPolicy.ACCEPT_NEW
    assert cfg.remote.timeout == 600
    assert cfg.remote.poll_interval == 10
    assert cfg.state_dir == DEFAULT_STATE_DIR
    assert cfg.bundle_root is None


def test_load_config_expands_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("SHEPHERD_USER", "ubuntu")
    cfg_text = textwrap.dedent("""
        ssh:
          user: ${SHEPHERD_USER}
          port: 2222
          host_key_policy: strict
        remote:
          timeout: 900
        bundle_root: /opt/setup-k8s
    """)
    f = tmp_path / "kubeshepherd.yaml"
    f.write_text(cfg_text)

    cfg = load_config(f)

    assert cfg.ssh.user == "ubuntu"
    assert cfg.ssh.port == 2222
    assert cfg.ssh.host_key_policy is HostKeyPolicy.STRICT
    assert cfg.remote.timeout == 900
    assert cfg.remote.poll_interval == 10
    assert cfg.bundle_root == Path("/opt/setup-k8s")


def test_secrets_file_next_to_config_is_merged(tmp_path: Path):
    (tmp_path / "kubeshepherd.yaml").write_text("ssh:\n  user: admin\n")
    (tmp_path / "secrets.yaml").write_text("ssh:\n  password_file: /etc/kubeshepherd/pw\n  user: ''\n")

    cfg = load_config(tmp_path / "kubeshepherd.yaml")

    assert cfg.ssh.password_file == Path("/etc/kubeshepherd/pw")
    # empty secret values never clobber the config
    assert cfg.ssh.user == "admin"


def test_secrets_file_from_env(tmp_path: Path, monkeypatch):
    (tmp_path / "kubeshepherd.yaml").write_text("ssh:\n  port: 22\n")
    secrets = tmp_path / "elsewhere.yaml"
    secrets.write_text("ssh:\n  port: 2200\n")
    monkeypatch.setenv("KUBESHEPHERD_SECRETS_FILE", str(secrets))

    assert load_config(tmp_path / "kubeshepherd.yaml").ssh.port == 2200


def test_env_overrides_win(tmp_path: Path, monkeypatch):
    f = tmp_path / "kubeshepherd.yaml"
    f.write_text(f"state_dir: {tmp_path / 'from-file'}\n")
    monkeypatch.setenv("KUBESHEPHERD_STATE_DIR", str(tmp_path / "from-env"))

    assert load_config(f).state_dir == tmp_path / "from-env"


def test_invalid_port(tmp_path: Path):
    f = tmp_path / "kubeshepherd.yaml"
    f.write_text("ssh:\n  port: 70000\n")
    with pytest.raises(ValidationError):
        load_config(f)


def test_top_level_must_be_mapping(tmp_path: Path):
    f = tmp_path / "kubeshepherd.yaml"
    f.write_text("- a\n- b\n")
    with pytest.raises(ValueError, match="must be a mapping"):
        load_config(f)
