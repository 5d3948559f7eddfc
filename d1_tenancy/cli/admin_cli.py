# d1_tenancy/cli/admin_cli.py
import typer
from . import tenant_cli

app = typer.Typer(
    name="admin",
    help="Administrative commands for tenant databases.",
    no_args_is_help=True
)

app.add_typer(tenant_cli.app, name="tenant")


@app.callback()
def admin_callback():
    """Admin commands authenticate with ADMIN_API_KEY from .env."""
    pass


if __name__ == "__main__":
    app()
