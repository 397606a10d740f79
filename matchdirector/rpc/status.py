# SPDX-License-Identifier: GPL-2.0-or-later
"""Status codes attached to RPC failures.

The codes and their textual rendering follow the canonical RPC status space
used by the matchmaking backend, so that a status relayed through several
services keeps a recognizable form, e.g.::

    rpc error: code = Unavailable desc = connection refused
"""

import enum


class Code(enum.IntEnum):
    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16

    @property
    def display_name(self):
        """CamelCase name, e.g. ``InvalidArgument``."""
        if self is Code.OK:
            return 'OK'
        return ''.join(w.capitalize() for w in self.name.split('_'))

    @classmethod
    def parse(cls, value):
        """Returns the code for an int, a name or a display name.

        Unrecognized values map to UNKNOWN.
        """
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return cls.UNKNOWN
        if isinstance(value, str):
            for code in cls:
                if value in (code.name, code.display_name):
                    return code
        return cls.UNKNOWN


class Status:
    """An RPC status: a code and a human readable message."""

    def __init__(self, code, message=''):
        self.code = Code(code)
        self.message = message

    def __str__(self):
        return 'rpc error: code = {} desc = {}'.format(
            self.code.display_name, self.message
        )

    def __repr__(self):
        return '<Status {} {!r}>'.format(self.code.name, self.message)

    def __eq__(self, other):
        if not isinstance(other, Status):
            return NotImplemented
        return (self.code, self.message) == (other.code, other.message)


class StatusError(Exception):
    """Exception carrying an RPC :class:`Status`."""

    def __init__(self, code, message=''):
        self.status = Status(code, message)
        super().__init__(str(self.status))

    @property
    def code(self):
        return self.status.code
