import pytest

from kubeshepherd.orchestration.join import (
    JoinInfoError,
    extract_join_info,
    parse_certificate_key,
    parse_join_command,
)
from kubeshepherd.topology.address import parse_node_address

from conftest import CA_HASH, CERT_KEY, JOIN_COMMAND

PRIMARY = parse_node_address("10.0.0.1")


def test_parse_join_command():
    info = parse_join_command("W0101 some warning\n" + JOIN_COMMAND)

    assert info.address == "10.0.0.1:6443"
    assert info.token == "abcdef.0123456789abcdef"
    assert info.ca_cert_hash == CA_HASH
    assert info.worker_args() == [
        "--join-token", "abcdef.0123456789abcdef",
        "--join-address", "10.0.0.1:6443",
        "--discovery-token-hash", CA_HASH,
    ]


@pytest.mark.parametrize(
    "text,match",
    [
        ("nothing here", "No join command"),
        ("kubeadm join 10.0.0.1:6443 --token BAD --discovery-token-ca-cert-hash " + CA_HASH, "token"),
        ("kubeadm join 10.0.0.1:6443 --token abcdef.0123456789abcdef --discovery-token-ca-cert-hash md5:x", "hash"),
        ("kubeadm join --token abcdef.0123456789abcdef", "address"),
    ],
)
def test_parse_join_command_rejects_bad_output(text, match):
    with pytest.raises(JoinInfoError, match=match):
        parse_join_command(text)


def test_parse_certificate_key_takes_last_line():
    assert parse_certificate_key(f"[upload-certs] Using certificate key:\n{CERT_KEY}\n") == CERT_KEY
    with pytest.raises(JoinInfoError):
        parse_certificate_key("[upload-certs] nothing\n")


def test_control_plane_args_need_certificate_key():
    info = parse_join_command(JOIN_COMMAND)
    with pytest.raises(JoinInfoError):
        info.control_plane_args()


def test_extract_ha_join_info(fake_transport):
    fake_transport.on("kubeadm token create --print-join-command", JOIN_COMMAND)
    fake_transport.on("upload-certs", f"[upload-certs] key:\n{CERT_KEY}\n")

    info = extract_join_info(fake_transport, PRIMARY, ha=True)

    assert info.certificate_key == CERT_KEY
    assert info.control_plane_args()[-3:] == ["--control-plane", "--certificate-key", CERT_KEY]


def test_extract_non_ha_skips_cert_upload(fake_transport):
    fake_transport.on("kubeadm token create --print-join-command", JOIN_COMMAND)

    info = extract_join_info(fake_transport, PRIMARY, ha=False)

    assert info.certificate_key is None
    assert not any("upload-certs" in c for c in fake_transport.commands())


def test_extract_retries_then_fails(fake_transport):
    fake_transport.on("kubeadm token create", stderr="connection refused", rc=1)

    with pytest.raises(JoinInfoError, match="Failed to get join command"):
        extract_join_info(fake_transport, PRIMARY, ha=False, attempts=3, delay=0)

    assert len([c for c in fake_transport.commands() if "token create" in c]) == 3
