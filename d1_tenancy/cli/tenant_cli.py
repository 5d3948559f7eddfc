# d1_tenancy/cli/tenant_cli.py
import typer
from typing import Optional
from typing_extensions import Annotated

from .utils_cli import make_api_request

app = typer.Typer(
    name="tenant",
    help="Manage tenant D1 databases via the Admin API.",
    no_args_is_help=True
)

TENANT_STATUSES = ("creating", "active", "deleting", "deleted")


@app.command("list")
def list_tenants(
    status: Annotated[
        Optional[str],
        typer.Option("--status", help=f"Only show records in this status ({', '.join(TENANT_STATUSES)}).")
    ] = None,
    skip: Annotated[
        int,
        typer.Option("--skip", help="Number of records to skip.", min=0)
    ] = 0,
    limit: Annotated[
        int,
        typer.Option("--limit", help="Maximum number of records to return.", min=1, max=100)
    ] = 100
):
    """List tenant database records, newest first."""
    if status is not None and status not in TENANT_STATUSES:
        typer.secho(f"Error: Unknown status '{status}'. Expected one of {', '.join(TENANT_STATUSES)}.", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    params = {"skip": skip, "limit": limit}
    if status is not None:
        params["status"] = status
    make_api_request("GET", "/admin/tenants/", params_payload=params)


@app.command("get")
def get_tenant(
    tenant_id: Annotated[
        str,
        typer.Argument(help="User or organization ID owning the database.")
    ]
):
    """Show the registry record of a tenant database."""
    make_api_request("GET", f"/admin/tenants/{tenant_id}")


@app.command("status")
def migration_status(
    tenant_id: Annotated[
        str,
        typer.Argument(help="User or organization ID owning the database.")
    ]
):
    """Show the schema version and migration history of a tenant database."""
    make_api_request("GET", f"/admin/tenants/{tenant_id}/migrations")


@app.command("create")
def create_tenant(
    tenant_id: Annotated[
        str,
        typer.Option(prompt="Tenant ID (user or organization ID)", help="User or organization ID to provision a database for.")
    ]
):
    """Provision a tenant database. Safe to re-run; an existing record is returned unchanged."""
    make_api_request("POST", "/admin/tenants/", json_payload={"tenant_id": tenant_id}, expected_status=[200, 201])


@app.command("delete")
def delete_tenant(
    tenant_id: Annotated[
        str,
        typer.Argument(help="User or organization ID owning the database.")
    ],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip the confirmation prompt.")
    ] = False
):
    """Delete a tenant's D1 database. The registry record is kept as 'deleted'."""
    if not yes:
        typer.confirm(f"Permanently delete the D1 database of tenant '{tenant_id}'?", abort=True)
    make_api_request("DELETE", f"/admin/tenants/{tenant_id}")


@app.command("migrate")
def migrate_tenants(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Only report pending migrations per tenant.")
    ] = False
):
    """Apply pending tenant migrations to every active tenant database."""
    report = make_api_request("POST", "/admin/tenants/migrate", json_payload={"dry_run": dry_run})
    if report and report.get("failed"):
        typer.secho(f"CLI: {report['failed']} tenant(s) failed to migrate.", fg=typer.colors.RED)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
