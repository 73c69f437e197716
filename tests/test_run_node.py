import pytest

from topicchat import config, crypto
from topicchat.discovery import info_hash_for
from topicchat.run_node import main
from topicchat.ticket import ChatTicket


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    monkeypatch.setenv(config.HOME_ENV, str(tmp_path))
    return tmp_path


def test_id_prints_derived_node_id(capsys):
    assert main(["alice", "id"]) == 0
    out = capsys.readouterr().out.splitlines()

    assert out[0] == crypto.export_node_id(crypto.public_key_bytes(config.derive_secret_key("alice")))
    assert out[1].startswith("fingerprint ")


def test_topic_prints_info_hash(capsys):
    main(["alice", "topic", "room-42"])

    assert info_hash_for("room-42").hex() in capsys.readouterr().out


def test_add_then_list_friends(capsys):
    _, friend = crypto.generate_keypair()
    me = crypto.public_key_bytes(config.derive_secret_key("alice"))

    main(["alice", "add", crypto.export_node_id(friend), crypto.export_node_id(me)])
    capsys.readouterr()
    main(["alice", "friends"])

    assert capsys.readouterr().out.split() == [crypto.export_node_id(friend)]


def test_bad_friend_exits_with_config_error():
    with pytest.raises(SystemExit):
        main(["alice", "add", "nope"])


def test_ticket_command(capsys):
    main(["alice", "ticket", "room-42", "--addr", "10.0.0.1:7777"])

    ticket = ChatTicket.parse(capsys.readouterr().out.strip())
    assert ticket.nodes[0].addrs == ["10.0.0.1:7777"]


def test_probe_reports_timeout(capsys):
    # Port 9 on localhost: nothing answers WHOAMI there.
    assert main(["alice", "probe", "127.0.0.1:9", "--timeout", "0.2"]) == 1
    assert "127.0.0.1:9" in capsys.readouterr().out


def test_bad_probe_target_exits_cleanly():
    with pytest.raises(SystemExit) as excinfo:
        main(["alice", "probe", "::1"])

    assert "bad argument" in str(excinfo.value)
