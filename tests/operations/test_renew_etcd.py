from datetime import datetime

import pytest

from kubeshepherd.errors import TopologyError, TransferError
from kubeshepherd.orchestration.operations import BackupOperation, RenewOperation, RestoreOperation
from kubeshepherd.orchestration.operations.etcd import default_snapshot_path

from conftest import FakeBuilder, healthy_cluster


# ----------------- renew -----------------

def test_renew_runs_on_control_planes_only(make_ctx, fake_transport):
    healthy_cluster(fake_transport, ["cp1", "cp2", "w1"], join=False)
    ctx = make_ctx("renew", "10.0.0.1,10.0.0.2", "10.0.0.3")

    report = RenewOperation(
        ctx, certs="apiserver,etcd-server", check_only=True, builder=FakeBuilder()
    ).run()

    assert report.ok, report.error
    assert fake_transport.connectivity_checks == ["10.0.0.1", "10.0.0.2"]
    assert [label for label, _ in fake_transport.uploaded_scripts] == ["10.0.0.1", "10.0.0.2"]
    [script] = fake_transport.scripts("10.0.0.2")
    assert script.endswith("renew --certs apiserver,etcd-server --check-only")
    assert fake_transport.commands("10.0.0.3") == []


def test_renew_stops_at_first_failed_control_plane(make_ctx, fake_transport):
    healthy_cluster(fake_transport, ["cp1", "cp2"], join=False)
    fake_transport.task_fails("renew", node="10.0.0.1")
    ctx = make_ctx("renew", "10.0.0.1,10.0.0.2")

    report = RenewOperation(ctx, builder=FakeBuilder()).run()

    assert report.halted
    assert fake_transport.scripts("10.0.0.2") == []
    assert ctx.checkpoint.steps() == {"renew_10.0.0.1": "failed"}


@pytest.mark.parametrize("certs", ["apiserver,bogus", " , "])
def test_renew_rejects_unknown_certificates(make_ctx, fake_transport, certs):
    ctx = make_ctx("renew", "10.0.0.1")

    with pytest.raises(TopologyError):
        RenewOperation(ctx, certs=certs, builder=FakeBuilder()).run()

    assert fake_transport.calls == []


# ----------------- etcd -----------------

def test_default_snapshot_path():
    assert str(default_snapshot_path(datetime(2026, 3, 1, 12, 0, 0))) == "etcd-snapshot-20260301-120000.db"


def test_backup_downloads_snapshot(make_ctx, fake_transport, tmp_path):
    healthy_cluster(fake_transport, ["cp1"], join=False)
    fake_transport.downloads["etcd-snapshot.db"] = b"\0" * 4096
    target = tmp_path / "backups" / "snap.db"
    ctx = make_ctx("backup", "10.0.0.1,10.0.0.2")

    report = BackupOperation(ctx, snapshot_path=target, builder=FakeBuilder()).run()

    assert report.ok, report.error
    assert target.stat().st_size == 4096
    assert fake_transport.connectivity_checks == ["10.0.0.1"]
    [script] = fake_transport.scripts("10.0.0.1")
    assert "backup --snapshot-path /tmp/ks-10.0.0.1-1/etcd-snapshot.db" in script


def test_backup_as_non_root_makes_snapshot_readable(make_ctx, fake_transport, tmp_path):
    healthy_cluster(fake_transport, ["cp1"], join=False)
    fake_transport.downloads["etcd-snapshot.db"] = b"\0" * 4096
    ctx = make_ctx("backup", "ubuntu@10.0.0.1")

    BackupOperation(ctx, snapshot_path=tmp_path / "snap.db", builder=FakeBuilder()).run()

    [script] = fake_transport.scripts("10.0.0.1")
    assert script.startswith("sudo -n sh ")
    assert "sudo -n chmod 644 /tmp/ks-10.0.0.1-1/etcd-snapshot.db" in fake_transport.commands("10.0.0.1")


def test_backup_rejects_tiny_snapshot(make_ctx, fake_transport, tmp_path):
    healthy_cluster(fake_transport, ["cp1"], join=False)
    fake_transport.downloads["etcd-snapshot.db"] = b"short"
    ctx = make_ctx("backup", "10.0.0.1")

    report = BackupOperation(ctx, snapshot_path=tmp_path / "snap.db", builder=FakeBuilder()).run()

    assert report.failed_nodes == ["10.0.0.1"]
    assert "too small" in report.phases[0].outcomes[0].error


def test_restore_uploads_then_restores(make_ctx, fake_transport, tmp_path):
    healthy_cluster(fake_transport, ["cp1"], join=False)
    snap = tmp_path / "snap.db"
    snap.write_bytes(b"\0" * 4096)
    ctx = make_ctx("restore", "10.0.0.1")

    report = RestoreOperation(ctx, snapshot_path=snap, builder=FakeBuilder()).run()

    assert report.ok, report.error
    assert ("10.0.0.1", "snap.db", "/tmp/ks-10.0.0.1-1/etcd-snapshot.db") in fake_transport.copies
    [script] = fake_transport.scripts("10.0.0.1")
    assert "restore --snapshot-path /tmp/ks-10.0.0.1-1/etcd-snapshot.db" in script


def test_restore_needs_local_snapshot(make_ctx, fake_transport, tmp_path):
    ctx = make_ctx("restore", "10.0.0.1")

    with pytest.raises(TransferError, match="Snapshot file not found"):
        RestoreOperation(ctx, snapshot_path=tmp_path / "missing.db", builder=FakeBuilder()).run()

    assert fake_transport.calls == []


def test_backup_to_unwritable_path_fails_cleanly(make_ctx, fake_transport, capture, tmp_path):
    healthy_cluster(fake_transport, ["cp1"], join=False)
    fake_transport.downloads["etcd-snapshot.db"] = b"\0" * 4096
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")
    ctx = make_ctx("backup", "10.0.0.1")

    report = BackupOperation(ctx, snapshot_path=blocker / "snap.db", builder=FakeBuilder()).run()

    assert report.failed_nodes == ["10.0.0.1"]
    assert "Cannot create snapshot directory" in report.phases[0].outcomes[0].error
    assert ctx.checkpoint.status == "failed"
    assert capture.events[-1].status == "failed"
    assert len(ctx.cleanup) == 0
