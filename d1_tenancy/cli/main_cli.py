# d1_tenancy/cli/main_cli.py
import typer
from . import admin_cli

app = typer.Typer(
    name="d1-tenancy",
    help="Command line interface for per-tenant Cloudflare D1 databases.",
    no_args_is_help=True
)

app.add_typer(admin_cli.app, name="admin")


@app.callback()
def main_callback():
    """
    Manage tenant databases through the d1_tenancy admin API.
    Use 'd1-tenancy admin --help' for admin commands.
    """
    pass


def cli_entry_point():
    """Console script entry point (see pyproject.toml)."""
    app()


if __name__ == "__main__":
    cli_entry_point()
