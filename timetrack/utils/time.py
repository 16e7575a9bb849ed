"""Clock helpers – every timestamp on the wire is integer epoch milliseconds.

Import :pyfunc:`now_ms` everywhere instead of calling ``time.time()``
directly so tests can monkey-patch a single function.
"""

import time


def now_ms() -> int:  # noqa: D401 – simple utility
    """Return current wall-clock time as epoch milliseconds."""

    return int(time.time() * 1000)


__all__ = ["now_ms"]
