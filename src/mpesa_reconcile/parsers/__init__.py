"""Parser registry for M-Pesa text sources.

Each parser is a module exposing a ``read(text)`` function that returns a
:class:`~mpesa_reconcile.models.StageResult`.  The ``PARSERS`` dict maps
source names (``"sms"`` for pasted notification messages, ``"statement"``
for statement text) to read functions, and ``get_parser()`` provides a
convenient lookup with a clear error on unknown names.
"""

from __future__ import annotations

from collections.abc import Callable

from mpesa_reconcile.parsers import message, statement

PARSERS: dict[str, Callable] = {
    "sms": message.read,
    "statement": statement.read,
}


def get_parser(name: str) -> Callable:
    """Look up a parser by source name.

    Args:
        name: Source name, e.g. "sms".

    Returns:
        The read function for the named source.

    Raises:
        KeyError: If no parser is registered under the given name.
    """
    return PARSERS[name]
