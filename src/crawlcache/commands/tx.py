"""Transaction commands -- list, create and inspect cache generations.

Provides the ``crawlcache tx`` sub-command group. ``tx new`` opens the
:class:`~crawlcache.cache.CacheStore` with the configured retention and
evicts exactly as a crawl would; ``tx list`` and ``tx show`` only inspect
the cache and never shrink it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import typer

from crawlcache.output import error, info, print_data, print_table, success, warning

if TYPE_CHECKING:
    from crawlcache.cache import CacheStore


tx_app = typer.Typer(no_args_is_help=True)


def _open_store(
    ctx: typer.Context, retention: Optional[int] = None, *, keep_all: bool = False
) -> CacheStore:
    """Resolve the configuration and open the cache store it points at.

    With *keep_all* the store is opened with a retention large enough to
    hold every recorded transaction, so inspecting the cache never evicts.

    Raises:
        typer.Exit: With the error's exit code when configuration or the
            control record is invalid.
    """
    from crawlcache.cache import CacheStore
    from crawlcache.config import resolve_config
    from crawlcache.exceptions import CrawlcacheError

    cache_dir = (ctx.obj or {}).get("cache_dir")
    try:
        config = resolve_config(cli_cache_dir=cache_dir, cli_retention=retention)
        retention = config.cache.retention
        if keep_all:
            retention = max(retention, CacheStore.recorded_count(config.cache.directory))
        return CacheStore(config.cache.directory, retention)
    except CrawlcacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


@tx_app.command("list")
def tx_list(ctx: typer.Context) -> None:
    """List retained transactions, newest first.

    Example::

        crawlcache tx list
        crawlcache --json tx list
    """
    store = _open_store(ctx, keep_all=True)
    info(f"Cache directory: {store.root_dir}")

    rows = [
        [tx.name, tx.create_at, str(len(tx.entry_paths()))]
        for tx in store.transactions
    ]
    if not rows:
        info("No transactions yet.")
        return
    print_table(["name", "created", "entries"], rows, title="Transactions")


@tx_app.command("new")
def tx_new(
    ctx: typer.Context,
    retention: Optional[int] = typer.Option(
        None, "--retention", "-r", help="Override the number of transactions kept."
    ),
) -> None:
    """Start a new transaction; the oldest ones beyond retention are removed.

    The new transaction's name is printed to stdout so scripts can capture
    it and pass it to ``crawlcache fetch --tx``.
    """
    store = _open_store(ctx, retention)
    tx = store.new_transaction()
    success(f"Created transaction {tx.name}")
    print_data(tx.name)


@tx_app.command("show")
def tx_show(
    ctx: typer.Context,
    name: str = typer.Argument(help="Transaction name (see 'crawlcache tx list')."),
) -> None:
    """List the cached requests stored in one transaction."""
    from crawlcache.cache import CacheEntry
    from crawlcache.exceptions import CacheEntryError, NoSuchTransactionError

    store = _open_store(ctx, keep_all=True)
    try:
        tx = store.get_transaction(name)
    except NoSuchTransactionError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    info(f"Transaction {tx.name} created {tx.create_at}")
    rows: list[list[str]] = []
    for path in tx.entry_paths():
        try:
            entry = CacheEntry.from_file(path)
            with entry.load() as resp:
                status = resp.status
        except CacheEntryError as exc:
            warning(str(exc))
            rows.append([path.name, "?", "?", "corrupt"])
            continue
        req = entry.request
        rows.append([entry.fingerprint, req.method, req.url, status])

    if not rows:
        info("No entries.")
        return
    print_table(["fingerprint", "method", "url", "status"], rows, title=f"Transaction {tx.name}")
