"""Genesys peak concurrency CLI - Thin wrapper around operations module."""

import asyncio
import json
import logging
import sys
from functools import wraps
from pathlib import Path
from typing import Annotated, Callable

import typer

from genesys_peak import __version__
from genesys_peak import client as client_config
from genesys_peak import operations, storage
from genesys_peak.auth import ClientCredentialsProvider
from genesys_peak.client import GenesysClient, GenesysClientError
from genesys_peak.logging_config import setup_logging
from genesys_peak.models import format_timestamp

# Main app
app = typer.Typer(
    name="genesys-peak",
    help="Genesys peak concurrency - compute peak concurrent calls from conversation analytics.",
    no_args_is_help=True,
    add_completion=False,
)

# Auth subcommand group
auth_app = typer.Typer(
    help="Authentication management - configure and test Genesys credentials.",
    no_args_is_help=True,
)
app.add_typer(auth_app, name="auth")


def output_json(data: dict) -> None:
    """Output JSON to stdout."""
    print(json.dumps(data, indent=2, default=str))


def output_error(message: str, exit_code: int = 1) -> None:
    """Output error and exit."""
    print(json.dumps({"error": message}), file=sys.stderr)
    raise typer.Exit(exit_code)


def run_async(coro):
    """Run async coroutine synchronously."""
    return asyncio.run(coro)


def genesys_command(func: Callable) -> Callable:
    """Decorator to handle common error patterns for CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (GenesysClientError, ValueError) as e:
            output_error(str(e))
    return wrapper


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        output_json({"version": __version__})
        raise typer.Exit()


def _resolve_window(month: str | None, start: str | None, end: str | None):
    if month and (start or end):
        raise ValueError("Use either --month or --start/--end, not both.")
    if month:
        return operations.month_window(month)
    if not (start and end):
        raise ValueError("Provide --month YYYY-MM or both --start and --end.")
    return operations.parse_window_bound(start), operations.parse_window_bound(end)


def _report_output(report: operations.RunReport, output_dir: Path | None, tool_name: str) -> dict:
    params = report.parameters.model_dump(mode="json")
    files = storage.save_run(
        params,
        report.peak,
        report.intervals,
        output_dir=output_dir,
        extra={"chunks": [c.model_dump() for c in report.chunks]},
        tool_name=tool_name,
    )
    peak = report.peak
    result = {
        "PeakConcurrentCalls": peak.peak_concurrent,
        "PeakMinuteUtc": format_timestamp(peak.peak_minute) if peak.peak_minute else None,
        "tiedMinutes": len(peak.peak_minutes),
        "intervals": len(report.intervals),
        "chunks": len(report.chunks),
        "files": files,
    }
    if report.failed_chunks:
        result["failedChunks"] = [c.interval for c in report.failed_chunks]
    return result


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version", "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log debug details, including skipped segments."),
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Also append log lines to this file."),
    ] = None,
) -> None:
    """Genesys peak concurrency - analyze conversation detail records."""
    setup_logging(logging.DEBUG if verbose else logging.INFO, log_file)


# =============================================================================
# Analysis Commands
# =============================================================================


@app.command("peak")
@genesys_command
def peak_cmd(
    month: Annotated[str | None, typer.Option("--month", "-m", help="Month to analyze (YYYY-MM)")] = None,
    start: Annotated[str | None, typer.Option("--start", help="Window start (ISO date/time, UTC)")] = None,
    end: Annotated[str | None, typer.Option("--end", help="Window end, exclusive (ISO date/time, UTC)")] = None,
    chunk_days: Annotated[int, typer.Option("--chunk-days", help="Days per analytics job")] = 7,
    page_size: Annotated[int, typer.Option("--page-size", help="Results per page")] = 100,
    poll_interval: Annotated[float, typer.Option("--poll-interval", help="Seconds between job status polls")] = 5.0,
    max_poll_wait: Annotated[float, typer.Option("--max-poll-wait", help="Seconds to wait for a job")] = 3600.0,
    loose: Annotated[bool, typer.Option("--loose", help="Do not require customer/external participants")] = False,
    no_media_filter: Annotated[
        bool, typer.Option("--no-media-filter", help="Submit jobs without the server-side voice filter")
    ] = False,
    on_chunk_failure: Annotated[
        operations.ChunkFailurePolicy,
        typer.Option("--on-chunk-failure", help="Abort the run or skip a failing chunk"),
    ] = operations.ChunkFailurePolicy.ABORT,
    parallel: Annotated[int, typer.Option("--parallel", help="Chunks processed concurrently")] = 1,
    max_attempts: Annotated[int, typer.Option("--max-attempts", help="Attempts per HTTP request")] = 6,
    output_dir: Annotated[Path | None, typer.Option("--output-dir", "-o", help="Directory for CSV/JSON outputs")] = None,
) -> None:
    """Compute peak concurrent voice calls over a month or interval using analytics jobs."""
    window_start, window_end = _resolve_window(month, start, end)
    params = operations.RunParameters(
        window_start=window_start,
        window_end=window_end,
        chunk_days=chunk_days,
        page_size=page_size,
        poll_interval=poll_interval,
        max_poll_wait=max_poll_wait,
        loose=loose,
        media_filter=not no_media_filter,
        on_chunk_failure=on_chunk_failure,
        max_parallel_chunks=parallel,
    )
    api = GenesysClient(retry_policy=client_config.RetryPolicy(max_attempts=max_attempts))
    report = run_async(operations.run_peak_analysis(api, params))
    output_json(_report_output(report, output_dir, "peak"))


@app.command("details-query")
@genesys_command
def details_query_cmd(
    start: Annotated[str, typer.Option("--start", help="Window start (ISO date/time, UTC)")],
    end: Annotated[str, typer.Option("--end", help="Window end, exclusive (ISO date/time, UTC)")],
    page_size: Annotated[int, typer.Option("--page-size", help="Results per page")] = 100,
    max_pages: Annotated[int | None, typer.Option("--max-pages", help="Stop after this many pages")] = None,
    loose: Annotated[bool, typer.Option("--loose", help="Do not require customer/external participants")] = False,
    no_media_filter: Annotated[
        bool, typer.Option("--no-media-filter", help="Query without the voice segment filter")
    ] = False,
    output_dir: Annotated[Path | None, typer.Option("--output-dir", "-o", help="Directory for CSV/JSON outputs")] = None,
) -> None:
    """Compute peak concurrency for a small window with the synchronous details query."""
    window_start, window_end = _resolve_window(None, start, end)
    api = GenesysClient()
    report = run_async(operations.run_details_query(
        api,
        window_start,
        window_end,
        page_size=page_size,
        loose=loose,
        media_filter=not no_media_filter,
        max_pages=max_pages,
    ))
    output_json(_report_output(report, output_dir, "details"))


@app.command("analyze-file")
@genesys_command
def analyze_file_cmd(
    records_file: Annotated[Path, typer.Argument(help="JSON file of conversation records or result pages")],
    month: Annotated[str | None, typer.Option("--month", "-m", help="Month to analyze (YYYY-MM)")] = None,
    start: Annotated[str | None, typer.Option("--start", help="Window start (ISO date/time, UTC)")] = None,
    end: Annotated[str | None, typer.Option("--end", help="Window end, exclusive (ISO date/time, UTC)")] = None,
    loose: Annotated[bool, typer.Option("--loose", help="Do not require customer/external participants")] = False,
    output_dir: Annotated[Path | None, typer.Option("--output-dir", "-o", help="Directory for CSV/JSON outputs")] = None,
) -> None:
    """Compute peak concurrency offline from saved conversation records."""
    window_start, window_end = _resolve_window(month, start, end)
    try:
        records = storage.load_records(records_file)
    except (OSError, json.JSONDecodeError) as e:
        output_error(f"Could not read {records_file}: {e}")

    peak, intervals = operations.analyze_conversations(records, window_start, window_end, loose=loose)
    params = {
        "recordsFile": str(records_file),
        "window_start": format_timestamp(window_start),
        "window_end": format_timestamp(window_end),
        "loose": loose,
    }
    files = storage.save_run(params, peak, intervals, output_dir=output_dir, tool_name="file")
    output_json({
        "PeakConcurrentCalls": peak.peak_concurrent,
        "PeakMinuteUtc": format_timestamp(peak.peak_minute) if peak.peak_minute else None,
        "records": len(records),
        "intervals": len(intervals),
        "files": files,
    })


# =============================================================================
# Auth Commands
# =============================================================================


@auth_app.command("login")
@genesys_command
def auth_login_cmd(
    client_id: Annotated[str | None, typer.Option("--client-id", help="OAuth client id")] = None,
    client_secret: Annotated[str | None, typer.Option("--client-secret", help="OAuth client secret")] = None,
    region: Annotated[
        str | None,
        typer.Option("--region", "-r", help="Region host (e.g., 'mypurecloud.com', 'mypurecloud.ie')"),
    ] = None,
) -> None:
    """Configure client-credentials authentication.

    Interactive mode (no options): prompts for credentials.
    Non-interactive mode (id and secret): validates and saves credentials.
    """
    if bool(client_id) != bool(client_secret):
        output_error("Provide both --client-id and --client-secret, or neither for interactive mode.")

    if not client_id:
        typer.echo("Configure Genesys Cloud client credentials\n")
        client_id = typer.prompt("Client ID")
        client_secret = typer.prompt("Client Secret", hide_input=True)
        region = typer.prompt("Region host", default=region or client_config.get_region())

    region = region or client_config.get_region()

    typer.echo("\nValidating credentials...", err=True)
    provider = ClientCredentialsProvider(client_id, client_secret, region)
    info = run_async(provider.validate())
    config_path = client_config.save_credentials(client_id, client_secret, region)
    output_json({
        "success": True,
        "message": f"Authenticated against {region}",
        "region": region,
        "expires_at": info["expires_at"],
        "config_path": str(config_path),
    })


@auth_app.command("status")
def auth_status_cmd() -> None:
    """Check current authentication configuration (env vars, config file, or none)."""
    output_json(client_config.get_auth_status())


@auth_app.command("logout")
def auth_logout_cmd() -> None:
    """Remove saved credentials from config file.

    Note: Does not affect environment variables if set.
    """
    deleted = client_config.delete_credentials()
    output = {
        "deleted": deleted,
        "config_path": str(client_config.CONFIG_PATH),
        "message": "Credentials removed from config file." if deleted else "No config file found to delete.",
    }
    status = client_config.get_auth_status()
    if status["source"] == "env":
        output["warning"] = "Credentials are still set through environment variables."
    output_json(output)


if __name__ == "__main__":
    app()
