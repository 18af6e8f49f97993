import pytest
import requests

from kubeshepherd.errors import VersionError
from kubeshepherd.orchestration import versions
from kubeshepherd.orchestration.versions import (
    KubeVersion,
    fetch_stable_patch,
    upgrade_path,
    validate_upgrade,
)

V = KubeVersion.parse


def test_parse_accepts_leading_v():
    assert V("v1.30.2") == KubeVersion(1, 30, 2)
    assert str(V("1.30.2")) == "1.30.2"


@pytest.mark.parametrize("text", ["1.30", "latest", "v1.30.2-rc.0", ""])
def test_parse_rejects(text):
    with pytest.raises(VersionError):
        V(text)


@pytest.mark.parametrize(
    "current,target,match",
    [
        ("1.30.2", "1.30.2", "already at target"),
        ("1.30.2", "1.29.9", "Downgrade"),
        ("1.30.2", "2.0.0", "Major"),
        ("1.30.2", "1.32.0", "skip minor"),
    ],
)
def test_invalid_upgrades(current, target, match):
    with pytest.raises(VersionError, match=match):
        validate_upgrade(V(current), V(target))


@pytest.mark.parametrize("target", ["1.30.5", "1.31.0"])
def test_valid_upgrades(target):
    validate_upgrade(V("1.30.2"), V(target))


def test_path_without_auto_step_is_the_target():
    assert upgrade_path(V("1.30.2"), V("1.31.1")) == [V("1.31.1")]
    with pytest.raises(VersionError):
        upgrade_path(V("1.30.2"), V("1.33.0"))


def test_auto_step_visits_latest_patch_of_each_minor():
    asked = []

    def latest(major, minor):
        asked.append((major, minor))
        return KubeVersion(major, minor, 7)

    path = upgrade_path(V("1.30.2"), V("1.33.0"), auto_step=True, latest_patch=latest)

    assert asked == [(1, 31), (1, 32)]
    assert [str(v) for v in path] == ["1.31.7", "1.32.7", "1.33.0"]


class _Resp:
    def __init__(self, status_code, text):
        self.status_code = status_code
        self.text = text


def test_fetch_stable_patch(monkeypatch):
    seen = {}

    def fake_get(url, timeout):
        seen["url"] = url
        return _Resp(200, "v1.31.4\n")

    monkeypatch.setattr(versions.requests, "get", fake_get)

    assert fetch_stable_patch(1, 31) == KubeVersion(1, 31, 4)
    assert seen["url"] == "https://dl.k8s.io/release/stable-1.31.txt"


def test_fetch_stable_patch_http_error(monkeypatch):
    monkeypatch.setattr(versions.requests, "get", lambda url, timeout: _Resp(404, "nope"))
    with pytest.raises(VersionError, match="HTTP 404"):
        fetch_stable_patch(1, 99)


def test_fetch_stable_patch_network_error(monkeypatch):
    def boom(url, timeout):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(versions.requests, "get", boom)
    with pytest.raises(VersionError, match="offline"):
        fetch_stable_patch(1, 31)
