"""Fetch command -- request a URL through the cache and the access gate.

``crawlcache fetch`` resolves the configuration, opens a
:class:`~crawlcache.client.Client`, selects a transaction (the newest by
default) and sends one request. A response already captured in that
transaction is replayed without touching the network.

The status line and, with ``--headers``, the response headers go to
stderr; the body goes to stdout or to ``--output-body``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from crawlcache.output import error, format_response, info, print_bytes, success


def fetch_command(
    ctx: typer.Context,
    url: str = typer.Argument(help="URL to fetch (http, https or file)."),
    tx: Optional[str] = typer.Option(
        None, "--tx", "-t", help="Replay into the named transaction."
    ),
    new: bool = typer.Option(
        False, "--new", help="Start a new transaction first."
    ),
    method: str = typer.Option(
        "GET", "--method", "-X", help="HTTP method."
    ),
    data: Optional[str] = typer.Option(
        None, "--data", help="Request body."
    ),
    content_type: str = typer.Option(
        "application/x-www-form-urlencoded", "--content-type", help="Content-Type for --data."
    ),
    headers: bool = typer.Option(
        False, "--headers", "-i", help="Print response headers to stderr."
    ),
    describe: bool = typer.Option(
        False, "--describe", help="Print the cached response descriptor instead of the body."
    ),
    output_body: Optional[Path] = typer.Option(
        None, "--output-body", "-O", help="Write the body to this file."
    ),
    retention: Optional[int] = typer.Option(
        None, "--retention", "-r", help="Override the number of transactions kept."
    ),
    interval: Optional[float] = typer.Option(
        None, "--interval", help="Override the pause between live requests (seconds)."
    ),
) -> None:
    """Fetch URL, replaying it from the cache when it was captured before.

    Example::

        crawlcache fetch https://example.com/
        crawlcache fetch --new -X POST --data 'q=1' https://example.com/search
        crawlcache fetch --tx 18c1f0a2b3d -O page.html https://example.com/
    """
    from crawlcache.client import Client
    from crawlcache.client.response import describe_response
    from crawlcache.config import resolve_config
    from crawlcache.exceptions import CrawlcacheError

    if tx and new:
        error("--tx and --new are mutually exclusive")
        raise typer.Exit(code=2)

    cache_dir = (ctx.obj or {}).get("cache_dir")
    try:
        config = resolve_config(
            cli_cache_dir=cache_dir, cli_retention=retention, cli_interval=interval
        )
        with Client.from_config(config) as client:
            if tx:
                client.set_transaction(tx)
            elif new:
                client.new_transaction()
            else:
                client.last_transaction()

            request_headers = {"Content-Type": content_type} if data is not None else None
            request = client.build_request(
                method.upper(), url, content=data, headers=request_headers
            )
            with client.do(request) as resp:
                info(f"{resp.proto} {resp.status}")
                if headers:
                    for name, values in resp.headers.items():
                        for value in values:
                            info(f"{name}: {value}")
                if describe:
                    summary = describe_response(resp)
                else:
                    body = resp.read()
    except CrawlcacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    except OSError as exc:
        error(str(exc))
        raise typer.Exit(code=1) from None

    if describe:
        format_response(summary)
    elif output_body is not None:
        output_body.write_bytes(body)
        success(f"Saved {len(body)} bytes to {output_body}")
    else:
        print_bytes(body)
