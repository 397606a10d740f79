# SPDX-License-Identifier: GPL-2.0-or-later
"""Classification of failures into retryable and fatal ones.

A failure is identified by the first RPC status found in its exception
chain: errors raised by the director wrap the RPC errors they were caused by.
"""

from matchdirector.rpc.status import Code, StatusError

# Bound on the number of chained exceptions inspected.
MAX_UNWRAP_DEPTH = 32

# When the match function is temporarily down, the backend relays its
# Unavailable status inside an Unknown one.
UNAVAILABLE_MARKER = 'rpc error: code = Unavailable'


def unwrap(exc):
    """Returns the exception `exc` was raised from, if any."""
    if exc.__cause__ is not None:
        return exc.__cause__
    if exc.__suppress_context__:
        return None
    return exc.__context__


def as_status(exc):
    """Returns the first :class:`Status` in the chain of `exc`, or None."""
    seen = set()
    for _ in range(MAX_UNWRAP_DEPTH):
        if exc is None or id(exc) in seen:
            return None
        if isinstance(exc, StatusError):
            return exc.status
        seen.add(id(exc))
        exc = unwrap(exc)
    return None


def has_status_code(exc, code):
    status = as_status(exc)
    return status is not None and status.code == code


def contains_unavailable(status):
    """Returns whether `status` embeds an Unavailable status in its text."""
    return UNAVAILABLE_MARKER in str(status)


def is_retryable(exc, embedded=contains_unavailable):
    """Returns whether `exc` is a transient failure worth retrying.

    Failures without any status in their chain are never retried. `embedded`
    is the predicate applied to statuses whose code is not UNAVAILABLE, to
    catch Unavailable errors relayed under another code.
    """
    status = as_status(exc)
    if status is None:
        return False
    return status.code == Code.UNAVAILABLE or embedded(status)
