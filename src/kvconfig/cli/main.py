"""
Main CLI entry point for kvconfig.

Provides the command-line interface using Click:

    kvconfig show app/prod            # flattened configuration
    kvconfig show app/prod --json     # same, as a JSON object
    kvconfig watch app/prod           # print every reload until Ctrl-C
    kvconfig set app/prod/db '{"port": 5432}'
"""

import asyncio as _asyncio
import json as _json
import logging as _logging
import pathlib as _pathlib
import sys as _sys
import threading as _threading
import typing as _typing

import click as _click

import kvconfig
import kvconfig.errors as errors
import kvconfig.provider as provider_module
import kvconfig.settings_source as settings_source
import kvconfig.source as source

CONTEXT_SETTINGS: dict[str, _typing.Any] = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 100,
}

_PARSER_CHOICE = _click.Choice(["json", "yaml", "simple"], case_sensitive=False)


def _run_async(coro: _typing.Coroutine[_typing.Any, _typing.Any, _typing.Any]) -> _typing.Any:
    """Run an async coroutine synchronously."""
    return _asyncio.run(coro)


def _configure_logging(verbose: bool) -> None:
    _logging.basicConfig(
        level=_logging.DEBUG if verbose else _logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=_sys.stderr,
    )


def _build_source(
    ctx: _click.Context,
    key: str,
    **options: _typing.Any,
) -> source.ConsulConfigurationSource:
    client_settings: source.ConsulClientSettings = ctx.obj["client_settings"]
    try:
        return source.ConsulConfigurationSource(key=key, client=client_settings, **options)
    except ValueError as e:
        raise _click.BadParameter(str(e)) from e


def _build_provider(
    ctx: _click.Context,
    config_source: source.ConsulConfigurationSource,
) -> provider_module.ConsulConfigurationProvider:
    kv_client = config_source.client.create_client(transport=ctx.obj.get("transport"))
    return config_source.build(kv_client=kv_client)


def _print_mapping(data: _typing.Mapping[str, str | None], *, color: bool) -> None:
    """Print flattened keys as a table (color) or as key = value lines."""
    if color:
        import rich.console as _rich_console
        import rich.table as _rich_table

        table = _rich_table.Table("Key", "Value", show_edge=False)
        for key in sorted(data, key=str.lower):
            value = data[key]
            table.add_row(key, "[dim]null[/dim]" if value is None else _rich_escape(value))
        _rich_console.Console().print(table)
        return

    for key in sorted(data, key=str.lower):
        value = data[key]
        _click.echo(f"{key} = {'null' if value is None else value}")


def _rich_escape(text: str) -> str:
    import rich.markup as _rich_markup

    return _rich_markup.escape(text)


@_click.group(context_settings=CONTEXT_SETTINGS)
@_click.version_option(kvconfig.__version__, "-V", "--version", prog_name="kvconfig")
@_click.option(
    "--address",
    type=str,
    default=None,
    help="Store address (default: CONSUL_HTTP_ADDR or 127.0.0.1:8500)",
)
@_click.option("--token", type=str, default=None, help="ACL token (default: CONSUL_HTTP_TOKEN)")
@_click.option("--datacenter", type=str, default=None, help="Datacenter to query")
@_click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@_click.pass_context
def cli(
    ctx: _click.Context,
    address: str | None,
    token: str | None,
    datacenter: str | None,
    verbose: bool,
) -> None:
    """kvconfig - configuration from a Consul-style key-value store."""
    _configure_logging(verbose)

    overrides: dict[str, _typing.Any] = {}
    if address is not None:
        overrides["http_addr"] = address
    if token is not None:
        overrides["http_token"] = token
    if datacenter is not None:
        overrides["datacenter"] = datacenter

    ctx.ensure_object(dict)
    ctx.obj.setdefault("client_settings", source.ConsulClientSettings(**overrides))
    ctx.obj["verbose"] = verbose


@cli.command()
@_click.argument("key")
@_click.option("--key-to-remove", type=str, default=None, help="Prefix stripped from entry keys")
@_click.option("--parser", "parser_name", type=_PARSER_CHOICE, default="json", show_default=True)
@_click.option("--optional", is_flag=True, help="Treat a missing key as empty configuration")
@_click.option("--json", "as_json", is_flag=True, help="Output flattened keys as a JSON object")
@_click.option("--nested", is_flag=True, help="Output the nested structure as JSON")
@_click.option(
    "--color/--no-color",
    "use_color",
    default=None,
    help="Render a table (default: auto-detect TTY)",
)
@_click.pass_context
def show(
    ctx: _click.Context,
    key: str,
    key_to_remove: str | None,
    parser_name: str,
    optional: bool,
    as_json: bool,
    nested: bool,
    use_color: bool | None,
) -> None:
    """Show the flattened configuration stored under KEY.

    Examples:
        kvconfig show app/prod
        kvconfig show app/prod --parser yaml --json
        kvconfig show app/prod --nested
    """
    config_source = _build_source(
        ctx,
        key,
        key_to_remove=key_to_remove,
        parser=parser_name,
        optional=optional,
    )
    try:
        with _build_provider(ctx, config_source) as provider:
            provider.load()
            data = dict(provider.data)
    except errors.KVConfigError as e:
        raise _click.ClickException(str(e)) from e

    if nested:
        _click.echo(_json.dumps(settings_source.unflatten(data), indent=2))
    elif as_json:
        _click.echo(_json.dumps(data, indent=2))
    else:
        color = use_color if use_color is not None else _sys.stdout.isatty()
        _print_mapping(data, color=color)


@cli.command()
@_click.argument("key")
@_click.option("--key-to-remove", type=str, default=None, help="Prefix stripped from entry keys")
@_click.option("--parser", "parser_name", type=_PARSER_CHOICE, default="json", show_default=True)
@_click.option("--optional", is_flag=True, help="Treat a missing key as empty configuration")
@_click.option(
    "--wait",
    "wait_seconds",
    type=_click.FloatRange(min=1.0),
    default=300.0,
    show_default=True,
    help="Longest time one blocking read may take, in seconds",
)
@_click.option(
    "--count",
    type=_click.IntRange(min=1),
    default=None,
    help="Exit after this many reloads",
)
@_click.pass_context
def watch(
    ctx: _click.Context,
    key: str,
    key_to_remove: str | None,
    parser_name: str,
    optional: bool,
    wait_seconds: float,
    count: int | None,
) -> None:
    """Print the configuration under KEY, then print it again after every change.

    Runs until interrupted (Ctrl-C) or until --count reloads were seen.
    """
    config_source = _build_source(
        ctx,
        key,
        key_to_remove=key_to_remove,
        parser=parser_name,
        optional=optional,
        reload_on_change=True,
        poll_wait_time=wait_seconds,
    )
    done = _threading.Event()
    seen = 0

    def on_reload(provider: _typing.Any) -> None:
        nonlocal seen
        seen += 1
        _click.echo(f"--- reloaded (index {provider.last_index})")
        _click.echo(_json.dumps(dict(provider.data), indent=2))
        if count is not None and seen >= count:
            done.set()

    try:
        with _build_provider(ctx, config_source) as provider:
            unregister = provider.reload_token.register(on_reload)
            provider.load()
            _click.echo(f"--- loaded (index {provider.last_index})")
            _click.echo(_json.dumps(dict(provider.data), indent=2))
            try:
                while not done.wait(0.5):
                    if not provider.is_watching:
                        raise _click.ClickException("watch stopped")
            except KeyboardInterrupt:
                pass
            finally:
                unregister()
    except errors.KVConfigError as e:
        raise _click.ClickException(str(e)) from e


@cli.command(name="set")
@_click.argument("key")
@_click.argument("value", required=False)
@_click.option(
    "--file",
    "value_file",
    type=_click.Path(exists=True, dir_okay=False, path_type=_pathlib.Path),
    default=None,
    help="Read the value from a file",
)
@_click.pass_context
def set_value(
    ctx: _click.Context,
    key: str,
    value: str | None,
    value_file: _pathlib.Path | None,
) -> None:
    """Write VALUE (or the contents of --file) to KEY."""
    if (value is None) == (value_file is None):
        raise _click.UsageError("pass exactly one of VALUE or --file")
    if value_file is not None:
        payload = value_file.read_bytes()
    else:
        payload = (value or "").encode("utf-8")

    client_settings: source.ConsulClientSettings = ctx.obj["client_settings"]
    kv_client = client_settings.create_client(transport=ctx.obj.get("transport"))

    async def write() -> bool:
        try:
            return await kv_client.put(key, payload)
        finally:
            await kv_client.aclose()

    try:
        accepted = _run_async(write())
    except errors.KVConfigError as e:
        raise _click.ClickException(str(e)) from e
    if not accepted:
        raise _click.ClickException(f"The store rejected the write to {key}")
    _click.echo(f"Wrote {len(payload)} bytes to {key}")


def main() -> None:
    """Main entry point with correct program name."""
    cli(prog_name="kvconfig")


if __name__ == "__main__":
    main()
