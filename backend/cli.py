"""playarr-jobs: admin CLI for the job engine.

Talks to a running server over the /api/v1/jobs endpoints.

Exit codes:
    0  success
    1  generic failure (job failed, server error, unreachable server)
    2  invalid arguments
    3  job conflict (already running, blocked, not running, cancelled)
    4  job not found
"""

import json

import requests
import typer
from rich.console import Console
from rich.table import Table

from config import get_settings

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_CONFLICT = 3
EXIT_NOT_FOUND = 4

_STATUS_EXIT_CODES = {404: EXIT_NOT_FOUND, 409: EXIT_CONFLICT, 400: EXIT_USAGE}

REQUEST_TIMEOUT = 10
# Triggers wait for the job; long syncs can take hours
TRIGGER_TIMEOUT = None

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="playarr-jobs",
    help="Inspect and control Playarr background jobs.",
    no_args_is_help=True,
    add_completion=False,
)


class _State:
    url: str = ""


state = _State()


@app.callback()
def main_callback(
    url: str = typer.Option(
        None,
        "--url",
        envvar="PLAYARR_API_URL",
        help="Base URL of the Playarr server",
    ),
) -> None:
    """Inspect and control Playarr background jobs."""
    state.url = (url or get_settings().api_url).rstrip("/")


def _call(method: str, path: str, timeout=REQUEST_TIMEOUT, params: dict = None) -> dict:
    """Send one API request; exits with the mapped code on errors."""
    url = f"{state.url}/api/v1{path}"
    try:
        resp = requests.request(method, url, params=params, timeout=timeout)
    except requests.RequestException as e:
        err_console.print(f"[red]Cannot reach {state.url}:[/red] {e}")
        raise typer.Exit(EXIT_FAILURE)

    try:
        data = resp.json()
    except ValueError:
        data = {"error": resp.text.strip() or f"HTTP {resp.status_code}"}

    if resp.status_code >= 400:
        message = data.get("error", f"HTTP {resp.status_code}") if isinstance(data, dict) else data
        err_console.print(f"[red]Error:[/red] {message}")
        raise typer.Exit(_STATUS_EXIT_CODES.get(resp.status_code, EXIT_FAILURE))
    return data


def _print_json(data) -> None:
    console.print_json(json.dumps(data, default=str))


@app.command("list")
def list_cmd(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """List all jobs with their last status."""
    data = _call("GET", "/jobs")
    if as_json:
        _print_json(data)
        return

    table = Table(title="Jobs")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Interval")
    table.add_column("Last execution")
    table.add_column("Runs", justify="right")
    for job in data.get("jobs", []):
        status = "running" if job.get("running") else job.get("status", "idle")
        table.add_row(
            job["name"],
            status,
            str(job.get("interval") or "-"),
            job.get("last_execution") or "-",
            str(job.get("execution_count", 0)),
        )
    console.print(table)


@app.command()
def status(name: str = typer.Argument(..., help="Job name")) -> None:
    """Show the persisted status of one job."""
    _print_json(_call("GET", f"/jobs/{name}"))


@app.command()
def trigger(
    name: str = typer.Argument(..., help="Job name"),
    provider: str = typer.Option(None, "--provider", "-p",
                                 help="Limit a sync job to one provider id"),
) -> None:
    """Run a job now and wait for its result."""
    params = {"provider_id": provider} if provider else None
    data = _call("POST", f"/jobs/{name}/trigger", timeout=TRIGGER_TIMEOUT, params=params)
    scope = f" for provider {provider}" if provider else ""
    console.print(f"[green]{name} completed{scope}[/green]")
    _print_json(data.get("result"))


@app.command()
def abort(name: str = typer.Argument(..., help="Job name")) -> None:
    """Ask a running job to stop."""
    _call("POST", f"/jobs/{name}/abort")
    console.print(f"[yellow]Abort requested for {name}[/yellow]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
