"""
Odyssey CLI: agent pairing and spending sessions.

Commands:
    odyssey pair      Pair an agent with a wallet using a short code
    odyssey agents    List paired agents
    odyssey request   Request a spending session for an agent
    odyssey approve   Approve a pending session as the wallet holder
    odyssey spend     Spend from an active session
    odyssey budget    Show per-asset usage of a session
    odyssey audit     View audit trail
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import Optional

import click

from .agents import AgentRegistry
from .audit import AuditTrail
from .config import Settings
from .errors import LedgerRejection, OdysseyError
from .ledger import SpendingLedger
from .models import Session, SpendingLimit
from .money import amount_to_base_units, format_base_units, limit_to_base_units
from .pairing import PairingCoordinator, PairingOutcome
from .remote import RemoteAuthorizationClient
from .session_store import SessionBook
from .sessions import SessionAuthority
from .signing import Ed25519Signer
from .store import AGENTS_KEY, SESSIONS_KEY, DurableStore, ensure_private_dir, ensure_private_file


class CliState:
    """Lazily wired components for one CLI invocation."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[RemoteAuthorizationClient] = None):
        self.settings = settings or Settings.from_env()
        self._client = client
        self._store: Optional[DurableStore] = None
        self._audit: Optional[AuditTrail] = None

    @property
    def store(self) -> DurableStore:
        if self._store is None:
            self._store = DurableStore(self.settings.store_dir)
        return self._store

    @property
    def audit(self) -> AuditTrail:
        if self._audit is None:
            self._audit = AuditTrail(self.settings.audit_path, self.settings.audit_key_path)
        return self._audit

    @property
    def client(self) -> RemoteAuthorizationClient:
        if self._client is None:
            self._client = RemoteAuthorizationClient(self.settings.api_url, self.settings.http_timeout)
        return self._client

    def registry(self) -> AgentRegistry:
        return AgentRegistry(self.store, audit=self.audit)

    def book(self) -> SessionBook:
        return SessionBook(self.store, audit=self.audit)

    def authority(self) -> SessionAuthority:
        registry = self.registry()
        book = self.book()
        ledger = SpendingLedger(book, audit=self.audit, registry=registry)
        return SessionAuthority(self.client, book, registry, ledger=ledger, audit=self.audit)

    def coordinator(self) -> PairingCoordinator:
        return PairingCoordinator(
            self.client,
            self.registry(),
            interval_ms=self.settings.poll_interval_ms,
            timeout_ms=self.settings.pairing_timeout_ms,
        )

    def report_store_errors(self) -> None:
        for key in (AGENTS_KEY, SESSIONS_KEY):
            error = self.store.last_error(key)
            if error is not None:
                click.echo(f"⚠️  {error}", err=True)


def _fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def _fmt_ms(ts: Optional[int]) -> str:
    if ts is None:
        return "never"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts / 1000))


def _read_secret(path: Path) -> str:
    value = path.read_text().strip()
    if not value:
        raise click.BadParameter(f"{path} is empty")
    return value


def _parse_limit(raw: str) -> SpendingLimit:
    """Parse ``MINT:AMOUNT:DECIMALS[:SYMBOL]`` with AMOUNT in display units."""
    parts = raw.split(":")
    if len(parts) not in (3, 4):
        raise click.BadParameter(f"Invalid limit {raw!r} (expected MINT:AMOUNT:DECIMALS[:SYMBOL])")
    mint, amount, decimals = parts[0], parts[1], parts[2]
    if not decimals.isdigit():
        raise click.BadParameter(f"Invalid decimals in limit {raw!r}")
    return SpendingLimit(
        mint=mint,
        amount=limit_to_base_units(amount, int(decimals)),
        decimals=int(decimals),
        symbol=parts[3] if len(parts) == 4 else None,
    )


def _echo_session(session: Session) -> None:
    click.echo(f"   ID:       {session.id}")
    click.echo(f"   Agent:    {session.agent_id}")
    click.echo(f"   Status:   {session.status.value}")
    click.echo(f"   Expires:  {_fmt_ms(session.expires_at)}")
    for limit in session.limits:
        spent = format_base_units(session.spent_for(limit.mint), limit.decimals, limit.symbol)
        cap = format_base_units(limit.amount, limit.decimals, limit.symbol)
        click.echo(f"   Limit:    {spent} of {cap} ({limit.mint})")


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """Odyssey: bounded spending sessions for automated agents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    if not isinstance(ctx.obj, CliState):
        ctx.obj = CliState()


@main.command()
@click.argument("code")
@click.option("--agent-id", required=True, help="Agent identifier")
@click.option("--agent-name", required=True, help="Human-readable agent name")
@click.pass_obj
def pair(state: CliState, code: str, agent_id: str, agent_name: str):
    """Pair an agent using the code shown by the wallet."""

    def progress(outcome: PairingOutcome) -> None:
        if outcome.status == "pending":
            click.echo("⏳ Waiting for wallet approval...")

    try:
        outcome = state.coordinator().pair(code, agent_id, agent_name, on_status=progress)
    except OdysseyError as e:
        _fail(f"Pairing failed: {e}")

    if outcome.status != "approved":
        _fail(f"Pairing {outcome.status}: {outcome.request_id}")
    click.echo(f"✅ Agent paired: {outcome.agent_id} ({outcome.agent_name})")
    if outcome.wallet_key:
        click.echo(f"   Wallet: {outcome.wallet_key}")
    if outcome.auth_secret:
        secret_path = state.settings.keys_dir / f"{agent_id}.auth"
        ensure_private_dir(secret_path.parent)
        ensure_private_file(secret_path)
        secret_path.write_text(outcome.auth_secret)
        click.echo(f"   Auth secret saved to: {secret_path}")


@main.command()
@click.option("--wallet-key", default=None, help="Only agents paired with this wallet")
@click.pass_obj
def agents(state: CliState, wallet_key: Optional[str]):
    """List paired agents."""
    registry = state.registry()
    found = registry.list_for_wallet(wallet_key) if wallet_key else registry.list_agents()
    state.report_store_errors()
    if not found:
        click.echo("No agents paired.")
        return
    for agent in found:
        click.echo(
            f"  {agent.id}  {agent.name}  [{agent.status.value}]  "
            f"paired {_fmt_ms(agent.paired_at)}, last seen {_fmt_ms(agent.last_seen)}"
        )


@main.command()
@click.argument("agent_id")
@click.pass_obj
def unpair(state: CliState, agent_id: str):
    """Revoke an agent and all of its live sessions."""
    try:
        revoked = state.authority().unpair(agent_id)
    except OdysseyError as e:
        _fail(f"Unpair failed: {e}")
    click.echo(f"✅ Agent unpaired: {agent_id}")
    for session in revoked:
        click.echo(f"   Revoked session {session.id}")


@main.command()
@click.option("--agent-id", default=None, help="Filter by agent")
@click.pass_obj
def sessions(state: CliState, agent_id: Optional[str]):
    """List sessions (expired ones are marked on read)."""
    found = state.book().list_sessions(agent_id=agent_id)
    state.report_store_errors()
    if not found:
        click.echo("No sessions found.")
        return
    for session in found:
        click.echo(
            f"  {session.id}  agent={session.agent_id}  [{session.status.value}]  "
            f"expires {_fmt_ms(session.expires_at)}"
        )


@main.command()
@click.option("--agent-id", required=True, help="Agent requesting the session")
@click.option("--wallet-key", required=True, help="Wallet public key")
@click.option("--session-key", required=True, help="Session public key")
@click.option("--duration", type=int, default=3600, help="Session duration in seconds")
@click.option("--limit", "limits", multiple=True, required=True,
              help="Spending limit MINT:AMOUNT:DECIMALS[:SYMBOL], repeatable")
@click.option("--auth-secret-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              required=True, help="File holding the agent's pairing auth secret")
@click.option("--key-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              required=True, help="PEM file with the agent's Ed25519 signing key")
@click.pass_obj
def request(
    state: CliState,
    agent_id: str,
    wallet_key: str,
    session_key: str,
    duration: int,
    limits: tuple[str, ...],
    auth_secret_file: Path,
    key_file: Path,
):
    """Request a spending session from the wallet."""
    try:
        parsed = [_parse_limit(raw) for raw in limits]
        session = state.authority().request_session(
            agent_id=agent_id,
            wallet_key=wallet_key,
            session_key=session_key,
            duration_seconds=duration,
            limits=parsed,
            auth_secret=_read_secret(auth_secret_file),
            signer=Ed25519Signer.from_pem_file(key_file),
        )
    except OdysseyError as e:
        _fail(f"Session request failed: {e}")
    click.echo(f"✅ Session requested ({session.status.value})")
    _echo_session(session)


@main.command()
@click.argument("request_id")
@click.option("--key-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              required=True, help="PEM file with the wallet's Ed25519 signing key")
@click.pass_obj
def approve(state: CliState, request_id: str, key_file: Path):
    """Approve a pending session request as the wallet holder."""
    try:
        authority = state.authority()
        authority.load_request(request_id)
        session = authority.approve(request_id, Ed25519Signer.from_pem_file(key_file))
    except OdysseyError as e:
        _fail(f"Approval failed: {e}")
    click.echo("✅ Session approved")
    _echo_session(session)


@main.command()
@click.argument("request_id")
@click.pass_obj
def reject(state: CliState, request_id: str):
    """Reject a pending session request."""
    try:
        session = state.authority().reject(request_id)
    except OdysseyError as e:
        _fail(f"Rejection failed: {e}")
    click.echo(f"✅ Session rejected: {session.id}")


@main.command()
@click.argument("session_id")
@click.pass_obj
def revoke(state: CliState, session_id: str):
    """Revoke an active session."""
    try:
        session = state.authority().revoke(session_id)
    except OdysseyError as e:
        _fail(f"Revoke failed: {e}")
    click.echo(f"✅ Session revoked: {session.id}")


@main.command()
@click.pass_obj
def expire(state: CliState):
    """Mark every active session past its deadline as expired."""
    count = state.book().sweep_expired()
    click.echo(f"✅ {count} session(s) expired")


@main.command()
@click.argument("session_id")
@click.option("--mint", default="native", help="Asset mint (default: native)")
@click.option("--amount", required=True, help="Amount in display units, e.g. 0.25")
@click.option("--destination", required=True, help="Recipient address")
@click.option("--secret-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              required=True, help="File holding the session secret")
@click.pass_obj
def spend(state: CliState, session_id: str, mint: str, amount: str, destination: str, secret_file: Path):
    """Spend from a session and submit the transfer."""
    authority = state.authority()
    try:
        session = authority.get_session(session_id)
        limit = session.limit_for(mint)
        decimals = limit.decimals if limit else 0
        base_units = amount_to_base_units(amount, decimals)
        result = authority.transfer(
            session_id,
            session_secret=_read_secret(secret_file),
            destination=destination,
            mint=mint,
            amount=base_units,
        )
    except LedgerRejection as e:
        _fail(f"Spend denied: {e.reason.value}")
    except OdysseyError as e:
        _fail(f"Spend failed: {e}")

    if not result.ok:
        _fail(f"Transfer failed: {result.signature} (spend rolled back)")
    click.echo(f"✅ Transfer {result.status}: {result.signature}")
    click.echo(f"   Amount: {format_base_units(base_units, decimals, limit.symbol if limit else None)}")


@main.command()
@click.argument("session_id")
@click.pass_obj
def budget(state: CliState, session_id: str):
    """Show per-asset usage for a session."""
    ledger = SpendingLedger(state.book())
    try:
        summary = ledger.get_summary(session_id)
    except OdysseyError as e:
        _fail(str(e))

    click.echo(f"📊 Budget for {summary['session_id']} [{summary['status']}]")
    for asset in summary["assets"]:
        click.echo(f"   {asset['symbol'] or asset['mint']}:")
        click.echo(f"      Spent:       {asset['spent']} of {asset['limit']}")
        click.echo(f"      Remaining:   {asset['remaining']}")
        click.echo(f"      Utilization: {asset['utilization']}")


@main.command()
@click.option("--session-id", default=None, help="Filter by session ID")
@click.option("--agent-id", default=None, help="Filter by agent ID")
@click.option("--limit", type=int, default=20, help="Number of events")
@click.pass_obj
def audit(state: CliState, session_id: Optional[str], agent_id: Optional[str], limit: int):
    """View the audit trail."""
    try:
        events = state.audit.read_events(session_id=session_id, agent_id=agent_id, limit=limit)
    except RuntimeError as e:
        _fail(str(e))

    if not events:
        click.echo("No audit events found.")
        return

    for event in events:
        ts = time.strftime("%H:%M:%S", time.localtime(event.timestamp))
        status = "✅" if event.success else "❌"
        target = f" {event.session_id}" if event.session_id else ""
        agent = f" agent={event.agent_id}" if event.agent_id else ""
        amount = f" {event.amount} {event.mint}" if event.amount else ""
        reason = f" ({event.reason})" if event.reason and not event.success else ""
        click.echo(f"  {ts} {status} {event.event_type}{target}{agent}{amount}{reason}")


@main.command()
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing key file")
def keygen(path: Path, force: bool):
    """Generate an Ed25519 signing key and print its public key."""
    if path.exists() and not force:
        _fail(f"{path} already exists (use --force to overwrite)")
    signer = Ed25519Signer.generate()
    path.parent.mkdir(parents=True, exist_ok=True)
    signer.write_pem(path)
    click.echo(f"✅ Key written to {path}")
    click.echo(f"   Public key: {signer.public_key}")


if __name__ == "__main__":
    main()
