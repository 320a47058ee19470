"""Built-in CLI sub-commands for crawlcache.

This package groups the Typer sub-command modules that form the CLI's
top-level command tree:

* :mod:`~crawlcache.commands.tx` -- list, create and inspect transactions.
* :mod:`~crawlcache.commands.fetch` -- fetch a URL through the cache.
* :mod:`~crawlcache.commands.config` -- view and modify global settings.

Each module either exports a :class:`typer.Typer` sub-application (for
multi-command groups like ``tx`` and ``config``) or a plain callback
function registered directly on the root app (for single commands like
``fetch``).
"""
