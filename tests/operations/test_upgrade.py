import pytest

from kubeshepherd.orchestration.operations import UpgradeOperation
from kubeshepherd.orchestration.versions import KubeVersion

from conftest import FakeBuilder, healthy_cluster

ADMIN_CONF = "apiVersion: v1\nkind: Config\n"


@pytest.fixture
def cluster(fake_transport):
    healthy_cluster(fake_transport, ["cp1", "w1"], join=False)
    fake_transport.on("kubeadm version -o short", "v1.30.2\n")
    fake_transport.on("cat /etc/kubernetes/admin.conf", ADMIN_CONF)
    return fake_transport


def _upgrade(ctx, target="1.31.0", **kw):
    kw.setdefault("latest_patch", lambda major, minor: KubeVersion(major, minor, 9))
    return UpgradeOperation(ctx, target_version=target, builder=FakeBuilder(), **kw)


def test_control_plane_then_worker(make_ctx, cluster):
    ctx = make_ctx("upgrade", "10.0.0.1", "10.0.0.2", passthrough=["--skip-drain", "--cri", "containerd"])

    report = _upgrade(ctx).run()

    assert report.ok, report.error
    order = [label for label, _ in cluster.uploaded_scripts]
    assert order == ["10.0.0.1", "10.0.0.2"]

    [cp] = cluster.scripts("10.0.0.1")
    assert cp.endswith("upgrade --kubernetes-version 1.31.0 --first-control-plane --cri containerd")

    [worker] = cluster.scripts("10.0.0.2")
    assert worker.startswith("env UPGRADE_ADMIN_CONF=/tmp/ks-10.0.0.2-")
    assert "--first-control-plane" not in worker
    conf = [path for (label, path) in cluster.modes if label == "10.0.0.2" and path.endswith("/admin.conf")]
    assert len(conf) == 1
    assert cluster.modes[("10.0.0.2", conf[0])] == 0o600
    assert ("10.0.0.2", conf[0]) in cluster.removed

    drains = [c for c in cluster.commands("10.0.0.1") if " drain " in c]
    uncordons = [c for c in cluster.commands("10.0.0.1") if " uncordon " in c]
    assert len(drains) == 2
    assert len(uncordons) == 2
    assert any("kubeadm upgrade plan" in c for c in cluster.commands("10.0.0.1"))
    assert ctx.checkpoint.get("target_version") == "1.31.0"
    assert ctx.checkpoint.steps() == {
        "upgrade_cp_10.0.0.1_1.31.0": "done",
        "upgrade_worker_10.0.0.2_1.31.0": "done",
    }


def test_skip_drain(make_ctx, cluster):
    ctx = make_ctx("upgrade", "10.0.0.1", "10.0.0.2")

    report = _upgrade(ctx, skip_drain=True).run()

    assert report.ok, report.error
    assert not any(" drain " in c or " uncordon " in c for c in cluster.commands())


def test_failed_node_is_rolled_back_and_run_halts(make_ctx, cluster):
    cluster.task_fails("--kubernetes-version 1.31.0", node="10.0.0.2")
    ctx = make_ctx("upgrade", "10.0.0.1", "10.0.0.2,10.0.0.3")

    report = _upgrade(ctx).run()

    assert report.halted
    assert report.failed_nodes == ["10.0.0.2"]
    scripts = cluster.scripts("10.0.0.2")
    assert len(scripts) == 2
    assert "upgrade --kubernetes-version 1.30.2" in scripts[1]
    assert any("systemctl restart kubelet" in c for c in cluster.commands("10.0.0.2"))
    assert cluster.scripts("10.0.0.3") == []
    assert ctx.checkpoint.status == "failed"


def test_rollback_can_be_disabled(make_ctx, cluster):
    cluster.task_fails("--kubernetes-version 1.31.0", node="10.0.0.1")
    ctx = make_ctx("upgrade", "10.0.0.1")

    report = _upgrade(ctx, rollback=False).run()

    assert report.failed_nodes == ["10.0.0.1"]
    assert len(cluster.scripts("10.0.0.1")) == 1
    assert not any("systemctl" in c for c in cluster.commands())


def test_auto_step_runs_every_minor_in_order(make_ctx, cluster):
    ctx = make_ctx("upgrade", "10.0.0.1", "10.0.0.2")

    report = _upgrade(ctx, target="1.32.0", auto_step=True).run()

    assert report.ok, report.error
    versions = [
        (label, script.split("--kubernetes-version ")[1].split()[0])
        for label, script in cluster.uploaded_scripts
    ]
    assert versions == [
        ("10.0.0.1", "1.31.9"),
        ("10.0.0.2", "1.31.9"),
        ("10.0.0.1", "1.32.0"),
        ("10.0.0.2", "1.32.0"),
    ]
    assert ctx.checkpoint.is_step_done("upgrade_worker_10.0.0.2_1.32.0")


def test_minor_skip_without_auto_step_is_rejected(make_ctx, cluster):
    ctx = make_ctx("upgrade", "10.0.0.1")

    report = _upgrade(ctx, target="1.32.0").run()

    assert "Cannot skip minor versions" in report.error
    assert cluster.uploaded_scripts == []


def test_unreadable_current_version(make_ctx, cluster):
    cluster.on("kubeadm version -o short", stderr="command not found", rc=127)
    ctx = make_ctx("upgrade", "10.0.0.1")

    report = _upgrade(ctx).run()

    assert "Failed to get current Kubernetes version" in report.error
    assert cluster.uploaded_scripts == []


def test_resume_after_worker_failure_with_primary_at_target(make_ctx, cluster):
    cluster.task_fails("--kubernetes-version 1.31.0", node="10.0.0.2")
    first = _upgrade(make_ctx("upgrade", "10.0.0.1", "10.0.0.2")).run()
    assert first.failed_nodes == ["10.0.0.2"]
    assert len(cluster.scripts("10.0.0.1")) == 1

    cluster.clear_task_failures()
    cluster.on("kubeadm version -o short", "v1.31.0\n", node="10.0.0.1")
    already = len(cluster.uploaded_scripts)
    ctx = make_ctx("upgrade", "10.0.0.1", "10.0.0.2", resume=True)

    report = _upgrade(ctx).run()

    assert report.ok, report.error
    rerun = cluster.uploaded_scripts[already:]
    assert [label for label, _ in rerun] == ["10.0.0.2"]
    assert "upgrade --kubernetes-version 1.31.0" in rerun[0][1]
    assert ctx.checkpoint.get("pre_upgrade_version") == "1.30.2"
    assert ctx.checkpoint.steps() == {
        "upgrade_cp_10.0.0.1_1.31.0": "done",
        "upgrade_worker_10.0.0.2_1.31.0": "done",
    }


def test_failed_node_diagnostics_are_collected_when_enabled(make_ctx, cluster, tmp_path):
    cluster.task_fails("--kubernetes-version 1.31.0", node="10.0.0.2")
    cluster.on("journalctl -u kubelet", "kubelet: node not ready\n", node="10.0.0.2")
    ctx = make_ctx("upgrade", "10.0.0.1", "10.0.0.2")
    ctx.options.diagnostics_dir = tmp_path / "diag"

    _upgrade(ctx).run()

    saved = tmp_path / "diag" / "upgrade-1.31.0-10.0.0.2" / "10.0.0.2-kubelet.log"
    assert saved.read_text() == "kubelet: node not ready\n"
    assert not any("journalctl" in c for c in cluster.commands("10.0.0.1"))


def test_diagnostics_are_off_by_default(make_ctx, cluster):
    cluster.task_fails("--kubernetes-version 1.31.0", node="10.0.0.1")

    _upgrade(make_ctx("upgrade", "10.0.0.1")).run()

    assert not any("journalctl" in c for c in cluster.commands())
