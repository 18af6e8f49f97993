from kubeshepherd.health.diagnostics import collect_diagnostics
from kubeshepherd.topology.address import parse_node_address

NODE = parse_node_address("ubuntu@10.0.0.7")


def test_saves_one_file_per_source(fake_transport, tmp_path):
    fake_transport.on("journalctl -u kubelet", "kubelet line\n")
    fake_transport.on("df -h", "/dev/sda1 50%\n")
    fake_transport.on("free -m", "Mem: 2048\n")

    saved = collect_diagnostics(fake_transport, NODE, tmp_path / "out")

    assert sorted(p.name for p in saved) == ["10.0.0.7-kubelet.log", "10.0.0.7-system.log"]
    system = (tmp_path / "out" / "10.0.0.7-system.log").read_text()
    assert "=== df -h ===\n/dev/sda1 50%" in system
    assert "=== free -m ===\nMem: 2048" in system
    assert "sudo -n journalctl -u kubelet --no-pager -n 100" in fake_transport.commands()


def test_unreachable_node_saves_nothing(fake_transport, tmp_path):
    fake_transport.unreachable.add("10.0.0.7")

    assert collect_diagnostics(fake_transport, NODE, tmp_path / "out") == []
