"""
Offboard CLI - Command line interface for the offboarding poller.

Usage:
    offboard --help                 Show all commands
    offboard tick                   Run one poller tick now
    offboard execute ID -t TENANT   Execute one scheduled action immediately
    offboard register-tenant ...    Store directory credentials for a tenant
    offboard generate-key           Print a new credentials encryption key
"""

import asyncio

import typer

app = typer.Typer(
    name="offboard",
    help="Offboard CLI - scheduled offboarding actions",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command()
def tick():
    """Dispatch every due scheduled action once, then exit."""
    from offboard.core.logging import setup_logging
    from offboard.engine.dispatcher import get_dispatcher

    setup_logging()
    summary = asyncio.run(get_dispatcher().tick())

    typer.echo(f"\nDue: {summary.due}")
    typer.echo(f"Finished: {summary.finished}")
    typer.echo(f"Already claimed: {summary.lost_race}")
    typer.echo(f"Discarded (recovered as stale): {summary.discarded}")
    typer.echo(f"Errored: {summary.errored}")
    typer.echo(f"Recovered stale runs: {summary.recovered}")
    if summary.errored:
        raise typer.Exit(1)


@app.command()
def execute(
    record_id: str = typer.Argument(..., help="Scheduled action ID"),
    tenant_id: str = typer.Option(..., "--tenant", "-t", help="Owning tenant ID"),
    actor_id: str = typer.Option("cli", "--actor", "-a", help="Recorded as executed_by"),
):
    """Execute one scheduled action now, bypassing its scheduled time."""
    from offboard.core.logging import setup_logging
    from offboard.core.tenant import TenantContext
    from offboard.engine.dispatcher import get_dispatcher
    from offboard.services.errors import ScheduledActionError

    setup_logging()
    ctx = TenantContext(tenant_id=tenant_id, session_id="cli", actor_id=actor_id)

    try:
        record = asyncio.run(get_dispatcher().execute_now(record_id, ctx))
    except ScheduledActionError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    typer.echo(f"\nStatus: {record.status.value}")
    for result in (record.execution_log or {}).get("action_results", []):
        line = result.get("detail") or result.get("error") or ""
        typer.echo(f"  [{result['status']}] {result['action']}: {line}")
    if record.status.value != "completed":
        raise typer.Exit(1)


@app.command("register-tenant")
def register_tenant(
    tenant_id: str = typer.Argument(..., help="Tenant ID as sent in X-Tenant-Id"),
    directory_tenant_id: str = typer.Option(..., "--directory-tenant", help="Directory (Entra) tenant ID"),
    client_id: str = typer.Option(..., "--client-id", help="App registration client ID"),
    client_secret: str = typer.Option(
        ..., "--client-secret", prompt=True, hide_input=True, help="App registration client secret"
    ),
):
    """Store the app credentials the poller uses to act on a tenant's directory."""
    from offboard.core.database import AsyncSessionLocal
    from offboard.core.logging import setup_logging
    from offboard.core.security import CredentialEncryptionError
    from offboard.services.tenants import register_tenant_credentials

    setup_logging()

    async def _run() -> None:
        async with AsyncSessionLocal() as db:
            await register_tenant_credentials(db, tenant_id, directory_tenant_id, client_id, client_secret)
            await db.commit()

    try:
        asyncio.run(_run())
    except CredentialEncryptionError as e:
        _print_error(f"{e} (create one with: offboard generate-key)")
        raise typer.Exit(1) from e
    _print_success(f"Credentials stored for tenant {tenant_id}")


@app.command("generate-key")
def generate_key():
    """Print a new key for CREDENTIALS_ENCRYPTION_KEYS."""
    from offboard.core.security import generate_encryption_key

    typer.echo(generate_encryption_key())


if __name__ == "__main__":
    app()
