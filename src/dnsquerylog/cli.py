import json
import logging
from collections import deque
from pathlib import Path

import click

from dnsquerylog.config import LOG_FILE, ensure_dirs, load_settings
from dnsquerylog.controller import LoggingToggleController
from dnsquerylog.errors import ToggleError
from dnsquerylog.logging_config import setup_logging
from dnsquerylog.ltsv import QueryLogEntry, parse_line
from dnsquerylog.proxy_config import ProxyConfigStore
from dnsquerylog.service import ProxyService, service_state
from dnsquerylog.sink import CLEAR, QueueSink

logger = logging.getLogger("dnsquerylog.cli")


def format_entry(entry: QueryLogEntry) -> str:
    """One display line for an entry."""
    if entry.parse_error:
        return f"[unparsed] {entry.raw_line}"
    columns = (entry.time, entry.client, entry.qtype, entry.name, entry.return_code)
    return "  ".join(c if c else "-" for c in columns)


def _entry_to_dict(entry: QueryLogEntry) -> dict:
    return {
        "raw": entry.raw_line,
        "fields": dict(entry.parsed) if entry.parsed else None,
        "parse_error": entry.parse_error,
    }


@click.group()
@click.version_option(package_name="dnsquerylog")
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def main(ctx, json_mode, verbose):
    """dnsquerylog - toggle and follow the DNS proxy query log."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = json_mode
    ctx.obj["verbose"] = verbose
    ensure_dirs()


def _emit(ctx, data, human_lines):
    """Output JSON or human-readable text based on mode."""
    if ctx.obj.get("json"):
        click.echo(json.dumps(data))
    else:
        for line in human_lines:
            click.echo(line)


def _fail(ctx, message):
    _emit(ctx, {"status": "error", "message": message}, [f"Error: {message}"])
    ctx.exit(1)


def _setup_logging(ctx) -> None:
    verbose = ctx.obj.get("verbose", False)
    setup_logging(LOG_FILE, foreground=verbose, verbose=verbose)


@main.command()
@click.pass_context
def status(ctx):
    """Show settings, proxy service state and its query_log section."""
    settings = load_settings()
    client = ProxyService(settings.proxy_binary, settings.proxy_config_file, settings.service_name)
    state = service_state(client)

    query_log = None
    try:
        config = ProxyConfigStore(settings.proxy_config_file).load()
        if config is not None:
            query_log = config.get_query_log()
    except (OSError, ValueError) as e:
        logger.debug("Could not read proxy configuration: %s", e)

    logging_on = query_log is not None and query_log.enabled
    _emit(ctx,
        {
            "status": "ok",
            "service": state.value,
            "proxy_config": settings.proxy_config_file,
            "query_log_file": settings.query_log_file,
            "query_log": (
                {"file": query_log.file_path, "format": query_log.format}
                if query_log is not None else None
            ),
            "logging": logging_on,
        },
        [f"Proxy service:  {state.value}",
         f"Proxy config:   {settings.proxy_config_file}",
         f"Query log file: {settings.query_log_file}",
         f"Query logging:  {'on' if logging_on else 'off'}"])


@main.command()
@click.option("--keep", is_flag=True, help="Leave query logging enabled on exit")
@click.pass_context
def follow(ctx, keep):
    """Enable query logging and print entries as they arrive."""
    if ctx.obj.get("json"):
        _fail(ctx, "--json and follow are incompatible. Follow mode is streaming.")

    _setup_logging(ctx)
    settings = load_settings()
    sink = QueueSink(maxsize=settings.sink_max_entries)
    controller = LoggingToggleController.from_settings(settings, sink)

    click.echo(f"Enabling query log at {controller.query_log_file}...")
    try:
        controller.set_enabled(True)
    except ToggleError as e:
        _fail(ctx, str(e))

    click.echo("Following query log. Press Ctrl+C to stop.")
    try:
        while True:
            event = sink.get(timeout=0.5)
            if event is None:
                if not controller.tailing:
                    click.echo("Query log tail ended.")
                    break
                continue
            for event in [event, *sink.drain()]:
                if event.kind != CLEAR:
                    click.echo(format_entry(event.entry))
    except KeyboardInterrupt:
        pass

    if keep:
        return
    try:
        controller.set_enabled(False)
        click.echo("Query logging disabled.")
    except ToggleError as e:
        _fail(ctx, str(e))


@main.command()
@click.pass_context
def disable(ctx):
    """Turn query logging off in the proxy configuration."""
    _setup_logging(ctx)
    settings = load_settings()
    controller = LoggingToggleController.from_settings(settings, QueueSink())
    try:
        controller.set_enabled(False)
    except ToggleError as e:
        _fail(ctx, str(e))
    _emit(ctx,
        {"status": "ok", "logging": False},
        ["Query logging disabled."])


@main.command("set-dir")
@click.argument("folder", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def set_dir(ctx, folder):
    """Write the query log into FOLDER from the next enable on."""
    settings = load_settings()
    controller = LoggingToggleController.from_settings(settings, QueueSink())
    path = controller.change_log_directory(folder.expanduser().resolve())
    _emit(ctx,
        {"status": "ok", "query_log_file": path},
        [f"Query log file set to {path}"])


@main.command()
@click.argument("file", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--lines", "-n", default=20, help="Number of lines to show")
@click.pass_context
def show(ctx, file, lines):
    """Parse and print the last lines of a query log file."""
    if file is None:
        file = Path(load_settings().query_log_file)
    if not file.exists():
        _fail(ctx, f"No query log at {file}")

    with open(file, "rb") as f:
        tail = deque((line.rstrip(b"\r\n") for line in f), maxlen=max(lines, 0))
    entries = [parse_line(line) for line in tail]

    _emit(ctx,
        {"status": "ok", "file": str(file), "entries": [_entry_to_dict(e) for e in entries]},
        [format_entry(e) for e in entries])
