"""crawlcache -- Replay captured HTTP responses and throttle live requests.

This package gives web crawlers a disk-backed, generational response cache
and a single-slot access gate. Every response is written to the active
*transaction* and read back from it, so a re-run of a crawl replays what it
saw before without touching the network, while new requests are spaced out
so the origin server is never hammered.

Typical workflow::

    crawlcache tx new                       # start a fresh generation
    crawlcache fetch https://example.com/   # live on first run, replayed after
    crawlcache tx list                      # inspect retained generations

The same engine is available as a library through
:class:`crawlcache.client.Client`.

Modules:
    app: Typer application and CLI entry point.
    cache: Generational store, transactions and cache entries.
    client: Caching, rate-limited HTTP client built on httpx.
    gate: The access gate enforcing spacing between live requests.
    tools: Download, ZIP and CSV helpers for crawl payloads.
    models: Pydantic models for configuration and on-disk records.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
