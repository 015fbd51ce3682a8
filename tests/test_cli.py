"""CLI command tests."""

import stat

import pytest
from click.testing import CliRunner

from odyssey.cli import CliState, main
from odyssey.config import Settings

from conftest import FakeRemote

APPROVED = {"status": "approved", "agentId": "a1", "agentName": "Bot", "walletKey": None, "authSecret": "s3cret"}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli(tmp_path, runner):
    remote = FakeRemote()
    state = CliState(Settings(home=tmp_path / "home", poll_interval_ms=1), client=remote)

    def invoke(*args):
        return runner.invoke(main, list(args), obj=state)

    invoke.remote = remote
    invoke.state = state
    return invoke


@pytest.fixture
def keys(tmp_path, cli):
    wallet = tmp_path / "wallet.pem"
    agent = tmp_path / "agent.pem"
    wallet_out = cli("keygen", str(wallet))
    cli("keygen", str(agent))
    wallet_key = wallet_out.output.split("Public key:")[1].strip()
    return wallet, agent, wallet_key


@pytest.fixture
def paired(cli, keys):
    cli.remote.pairing_statuses = [{**APPROVED, "walletKey": keys[2]}]
    result = cli("pair", "ABC123", "--agent-id", "a1", "--agent-name", "Bot")
    assert result.exit_code == 0, result.output
    return result


@pytest.fixture
def active_session(cli, keys, paired, tmp_path):
    wallet, agent, wallet_key = keys
    secret = tmp_path / "auth.secret"
    secret.write_text("s3cret")
    result = cli(
        "request",
        "--agent-id", "a1",
        "--wallet-key", wallet_key,
        "--session-key", "sk-1",
        "--duration", "600",
        "--limit", "native:1:9:SOL",
        "--auth-secret-file", str(secret),
        "--key-file", str(agent),
    )
    assert result.exit_code == 0, result.output
    result = cli("approve", "req-1", "--key-file", str(wallet))
    assert result.exit_code == 0, result.output
    return "req-1"


def test_keygen_refuses_overwrite(cli, tmp_path):
    path = tmp_path / "k.pem"
    assert cli("keygen", str(path)).exit_code == 0
    result = cli("keygen", str(path))
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_pair_saves_agent_and_secret(cli, paired, tmp_path):
    assert "Agent paired: a1 (Bot)" in paired.output
    assert (tmp_path / "home" / "keys" / "a1.auth").read_text() == "s3cret"

    listed = cli("agents")
    assert "a1  Bot  [active]" in listed.output


def test_pair_secret_file_is_private(cli, paired, tmp_path):
    secret_path = tmp_path / "home" / "keys" / "a1.auth"
    assert stat.S_IMODE(secret_path.stat().st_mode) == 0o600


def test_pair_rejected(cli):
    cli.remote.pairing_statuses = [{"status": "rejected"}]
    result = cli("pair", "ABC123", "--agent-id", "a1", "--agent-name", "Bot")
    assert result.exit_code == 1
    assert "Pairing rejected" in result.output


def test_request_approve_spend_budget(cli, active_session, tmp_path):
    sessions = cli("sessions")
    assert f"{active_session}  agent=a1  [active]" in sessions.output

    secret = tmp_path / "session.secret"
    secret.write_text("session-secret")
    spend = cli(
        "spend", active_session,
        "--amount", "0.25",
        "--destination", "dest",
        "--secret-file", str(secret),
    )
    assert spend.exit_code == 0, spend.output
    assert "0.25 SOL" in spend.output

    budget = cli("budget", active_session)
    assert "0.25 SOL of 1 SOL" in budget.output
    assert "25.0%" in budget.output


def test_spend_over_limit_is_denied(cli, active_session, tmp_path):
    secret = tmp_path / "session.secret"
    secret.write_text("session-secret")
    result = cli(
        "spend", active_session,
        "--amount", "2",
        "--destination", "dest",
        "--secret-file", str(secret),
    )
    assert result.exit_code == 1
    assert "limit-exceeded" in result.output
    assert cli.remote.called("transfer") == []


def test_approve_with_wrong_key_fails(cli, keys, paired, tmp_path):
    wallet, agent, wallet_key = keys
    secret = tmp_path / "auth.secret"
    secret.write_text("s3cret")
    cli(
        "request",
        "--agent-id", "a1",
        "--wallet-key", wallet_key,
        "--session-key", "sk-1",
        "--limit", "native:1:9",
        "--auth-secret-file", str(secret),
        "--key-file", str(agent),
    )
    result = cli("approve", "req-1", "--key-file", str(agent))
    assert result.exit_code == 1
    assert "Approval failed" in result.output


def test_revoke_then_unpair(cli, active_session):
    assert cli("revoke", active_session).exit_code == 0
    result = cli("unpair", "a1")
    assert result.exit_code == 0, result.output
    assert "No agents paired." in cli("agents").output


def test_audit_lists_events(cli, active_session):
    result = cli("audit", "--session-id", active_session)
    assert "session_requested" in result.output
    assert "session_approved" in result.output


def test_corrupt_store_is_reported(cli):
    store_dir = cli.state.settings.store_dir
    store_dir.mkdir(parents=True)
    (store_dir / "odyssey_sessions.json").write_text("{oops")

    result = cli("sessions")
    assert result.exit_code == 0
    assert "No sessions found." in result.output
    assert "corrupt" in result.output


def test_invalid_limit_format(cli, keys, paired, tmp_path):
    wallet, agent, wallet_key = keys
    secret = tmp_path / "auth.secret"
    secret.write_text("s3cret")
    result = cli(
        "request",
        "--agent-id", "a1",
        "--wallet-key", wallet_key,
        "--session-key", "sk-1",
        "--limit", "native:1",
        "--auth-secret-file", str(secret),
        "--key-file", str(agent),
    )
    assert result.exit_code != 0
    assert "Invalid limit" in result.output
