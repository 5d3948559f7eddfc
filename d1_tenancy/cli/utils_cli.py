# d1_tenancy/cli/utils_cli.py
import requests
import typer
import json
from typing import Optional, Dict, Any, Union, List

from . import config


def _admin_headers(endpoint: str) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if config.D1_TENANCY_CLI_ADMIN_API_KEY:
        headers["X-Admin-API-Key"] = config.D1_TENANCY_CLI_ADMIN_API_KEY
    elif "/admin/" in endpoint:
        typer.secho(
            "CLI: Warning - ADMIN_API_KEY not set in .env for CLI. Admin API calls will be rejected.",
            fg=typer.colors.YELLOW
        )
    return headers


def _error_detail(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        code = data.get("error")
        detail = data.get("detail", response.text)
        return f"{code}: {detail}" if code else str(detail)
    return response.text


def make_api_request(
    method: str,
    endpoint: str,
    json_payload: Optional[Dict[str, Any]] = None,
    params_payload: Optional[Dict[str, Any]] = None,
    expected_status: Union[int, List[int]] = 200,
) -> Any:
    """
    Call the admin API, echo the request and JSON response, and return the
    decoded body.

    Exits with code 1 on connection problems or an unexpected status.
    """
    full_url = f"{config.D1_TENANCY_CLI_API_BASE_URL}{endpoint}"
    headers = _admin_headers(endpoint)

    typer.echo(f"CLI: {method.upper()} {full_url}")
    if json_payload:
        typer.echo(f"CLI: JSON Payload: {json.dumps(json_payload, indent=2)}")
    if params_payload:
        typer.echo(f"CLI: Query Params: {params_payload}")

    try:
        response = requests.request(
            method,
            full_url,
            json=json_payload,
            params=params_payload,
            headers=headers,
            timeout=config.D1_TENANCY_CLI_TIMEOUT
        )
    except requests.exceptions.ConnectionError as e:
        typer.secho(
            f"CLI: Connection Error - Could not connect to API at {full_url}. Is the server running? Error: {e}",
            fg=typer.colors.RED
        )
        raise typer.Exit(code=1)
    except requests.exceptions.RequestException as e:
        typer.secho(f"CLI: Request Error - {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"CLI: Response Status: {response.status_code}")
    expected_statuses = [expected_status] if isinstance(expected_status, int) else expected_status
    if response.status_code not in expected_statuses:
        typer.secho(
            f"CLI: API Error - Expected status {expected_status}, got {response.status_code}. "
            f"Detail: {_error_detail(response)}",
            fg=typer.colors.RED
        )
        raise typer.Exit(code=1)

    if not response.content:
        typer.secho(f"CLI: Success (Status {response.status_code}, No Content).", fg=typer.colors.GREEN)
        return None

    try:
        data = response.json()
    except ValueError:
        typer.secho(f"CLI: Error - Could not decode JSON response. Raw text: {response.text}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(typer.style("CLI: Response JSON:", fg=typer.colors.CYAN))
    typer.echo(json.dumps(data, indent=2))
    return data
