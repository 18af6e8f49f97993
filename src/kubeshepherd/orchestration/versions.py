# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/versions.py

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List

import requests

from ..errors import VersionError

STABLE_URL = "https://dl.k8s.io/release/stable-{major}.{minor}.txt"

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)$")


@dataclass(frozen=True, order=True)
class KubeVersion:
    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str) -> "KubeVersion":
        m = _VERSION_RE.match(text.strip())
        if not m:
            raise VersionError(f"Invalid version format: {text!r} (expected MAJOR.MINOR.PATCH)")
        return cls(*(int(g) for g in m.groups()))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def validate_upgrade(current: KubeVersion, target: KubeVersion) -> None:
    """One minor version forward at most, never backwards, never in place."""
    if current == target:
        raise VersionError(f"Current version ({current}) is already at target version ({target})")
    if target < current:
        raise VersionError(f"Downgrade not supported: {current} -> {target}")
    if target.major != current.major:
        raise VersionError(f"Major version upgrade not supported: {current} -> {target}")
    if target.minor > current.minor + 1:
        raise VersionError(
            f"Cannot skip minor versions: {current} -> {target} (max +1 minor version at a time)"
        )


def fetch_stable_patch(major: int, minor: int, *, timeout: float = 10) -> KubeVersion:
    url = STABLE_URL.format(major=major, minor=minor)
    try:
        r = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        raise VersionError(f"Failed to fetch latest patch version for {major}.{minor}.x: {exc}") from exc
    if r.status_code != 200:
        raise VersionError(
            f"Failed to fetch latest patch version for {major}.{minor}.x: HTTP {r.status_code}"
        )
    return KubeVersion.parse(r.text)


def upgrade_path(
    current: KubeVersion,
    target: KubeVersion,
    *,
    auto_step: bool = False,
    latest_patch: Callable[[int, int], KubeVersion] = fetch_stable_patch,
) -> List[KubeVersion]:
    """
    Versions to upgrade through, ending with *target*.

    With auto_step, every skipped minor is visited at its latest stable
    patch release; without it the path is just ``[target]`` and must be a
    valid single step.
    """
    if auto_step and target.major == current.major and target.minor > current.minor + 1:
        steps = [latest_patch(current.major, m) for m in range(current.minor + 1, target.minor)]
        steps.append(target)
    else:
        steps = [target]

    prev = current
    for step in steps:
        validate_upgrade(prev, step)
        prev = step
    return steps
