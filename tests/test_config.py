import json

from paycall import config


def test_expand_path(tmp_path):
    assert config.expand_path("~", tmp_path) == tmp_path
    assert config.expand_path("~/keys/id.json", tmp_path) == tmp_path / "keys" / "id.json"
    assert str(config.expand_path("/etc/id.json", tmp_path)) == "/etc/id.json"


def test_read_rc_file(tmp_path):
    assert config.read_rc_file(tmp_path) == {}

    rc = tmp_path / ".paycallrc"
    rc.write_text(json.dumps({"apiUrl": "https://rc.example.com", "chain": "base"}))
    assert config.read_rc_file(tmp_path)["chain"] == "base"

    rc.write_text("{broken")
    assert config.read_rc_file(tmp_path) == {}

    rc.write_text(json.dumps(["not", "an", "object"]))
    assert config.read_rc_file(tmp_path) == {}


def test_env_wins_over_rc_file(tmp_path, monkeypatch):
    (tmp_path / ".paycallrc").write_text(
        json.dumps({"apiUrl": "https://rc.example.com", "chain": "base", "rpcUrl": "https://rpc.rc"})
    )
    monkeypatch.setenv("PAYCALL_API_URL", "https://env.example.com")
    monkeypatch.delenv("PAYCALL_CHAIN", raising=False)
    monkeypatch.delenv("SOLANA_RPC_URL", raising=False)

    assert config.resolve_api_url(tmp_path) == "https://env.example.com"
    assert config.resolve_chain(tmp_path) == "base"
    assert config.resolve_solana_rpc_url(tmp_path) == "https://rpc.rc"


def test_defaults_without_env_or_rc_file(tmp_path, monkeypatch):
    for name in ("PAYCALL_API_URL", "PAYCALL_CHAIN", "SOLANA_RPC_URL"):
        monkeypatch.delenv(name, raising=False)

    assert config.resolve_api_url(tmp_path) == config.DEFAULT_API_URL
    assert config.resolve_chain(tmp_path) == "solana"
    assert config.resolve_solana_rpc_url(tmp_path) == config.DEFAULT_SOLANA_RPC_URL
