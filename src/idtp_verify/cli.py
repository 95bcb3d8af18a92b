import json
from pathlib import Path

import click

from idtp_core.errors import SecurityContextError
from .crypto import SecurityContext, load_context
from .logic import check_datagram

key_options = [
    click.option("--hmac-key-file", type=click.Path(exists=True, dir_okay=False, path_type=Path)),
    click.option("--hmac-key", envvar="IDTP_HMAC_KEY", help="HMAC key as hex."),
    click.option("--envelope-key-file", type=click.Path(exists=True, dir_okay=False, path_type=Path)),
    click.option("--envelope-key", envvar="IDTP_ENVELOPE_KEY", help="Envelope key as hex."),
]


def with_keys(fn):
    for option in reversed(key_options):
        fn = option(fn)
    return fn


def context_or_exit(**keys) -> SecurityContext:
    try:
        return load_context(**keys)
    except SecurityContextError as e:
        # Fail closed: never run without authentication.
        click.echo(f"FATAL: {e}")
        raise SystemExit(1)


def _report(data: bytes, ctx: SecurityContext) -> None:
    result = check_datagram(data, ctx)
    click.echo(json.dumps(result, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    if result["status"] != "PASS":
        raise SystemExit(1)


@click.group()
def main():
    pass


@main.command("hex")
@click.argument("frame_hex")
@with_keys
def hex_cmd(frame_hex: str, **keys):
    ctx = context_or_exit(**keys)
    try:
        data = bytes.fromhex(frame_hex.strip())
    except ValueError as e:
        click.echo(f"FATAL: {e}")
        raise SystemExit(1)
    _report(data, ctx)


@main.command("file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@with_keys
def file_cmd(path: Path, **keys):
    ctx = context_or_exit(**keys)
    _report(path.read_bytes(), ctx)


if __name__ == "__main__":
    main()
