# SPDX-License-Identifier: GPL-2.0-or-later
"""Typed access to record extensions.

Extensions map string keys to ``google.protobuf.Any`` messages. The accessors
here unpack the wrapper messages commonly stored in them::

    found, value = get_extension(assignment, 'region', STRING)
    region = get_str_extension(assignment, 'region')  # '' when unusable
"""

from google.protobuf import any_pb2, wrappers_pb2
from google.protobuf.message import DecodeError


class ExtensionError(Exception):
    """Raised when an extension cannot be read.

    `found` tells whether the key was present (and its value malformed).
    """

    def __init__(self, message, found=False):
        super().__init__(message)
        self.found = found


class WrapperType:
    """A wrapper message type holding a single scalar ``value``."""

    def __init__(self, message_class, zero):
        self.message_class = message_class
        self.zero = zero

    @property
    def name(self):
        return self.message_class.DESCRIPTOR.full_name

    @property
    def type_url(self):
        return 'type.googleapis.com/' + self.name

    def __repr__(self):
        return f'<WrapperType {self.name}>'


STRING = WrapperType(wrappers_pb2.StringValue, '')
INT32 = WrapperType(wrappers_pb2.Int32Value, 0)
INT64 = WrapperType(wrappers_pb2.Int64Value, 0)
BOOL = WrapperType(wrappers_pb2.BoolValue, False)
DOUBLE = WrapperType(wrappers_pb2.DoubleValue, 0.0)


def get_extension(obj, key, value_type):
    """Reads extension `key` of record `obj` as a `value_type` value.

    Returns ``(found, value)``: ``(False, zero)`` when `obj` has no such
    extension. Raises :class:`ExtensionError` when `obj` is None, or, with
    ``found=True``, when the extension holds another type or a malformed
    payload.
    """
    if obj is None:
        raise ExtensionError("record holding extensions is None")
    extensions = getattr(obj, 'extensions', None)
    if not extensions or key not in extensions:
        return False, value_type.zero
    box = extensions[key]
    if not isinstance(box, any_pb2.Any):
        raise ExtensionError(
            f"extension {key!r} holds a {type(box).__name__}", found=True
        )
    if not box.Is(value_type.message_class.DESCRIPTOR):
        raise ExtensionError(
            f"extension {key!r} holds {box.TypeName()}, not {value_type.name}",
            found=True,
        )
    message = value_type.message_class()
    try:
        box.Unpack(message)
    except DecodeError as exn:
        raise ExtensionError(
            f"failed to decode extension {key!r} as {value_type.name}: {exn}",
            found=True,
        ) from exn
    return True, message.value


def get_str_extension(obj, key):
    """Returns the string extension `key` of `obj`, or '' if unusable."""
    try:
        return get_extension(obj, key, STRING)[1]
    except ExtensionError:
        return ''


def get_int_extension(obj, key):
    """Returns the int32 extension `key` of `obj`, or 0 if unusable."""
    try:
        return get_extension(obj, key, INT32)[1]
    except ExtensionError:
        return 0


def pack(value, value_type=None):
    """Boxes a plain Python value in a ``google.protobuf.Any``.

    Integers are packed as int32 unless `value_type` says otherwise. Raises
    TypeError or ValueError for values `value_type` cannot hold.
    """
    if value_type is None:
        if isinstance(value, bool):
            value_type = BOOL
        elif isinstance(value, int):
            value_type = INT32
        elif isinstance(value, float):
            value_type = DOUBLE
        elif isinstance(value, str):
            value_type = STRING
        else:
            raise TypeError(f"cannot pack {type(value).__name__} values")
    elif isinstance(value, bool) and value_type is not BOOL:
        raise TypeError(f"cannot pack a bool as {value_type.name}")
    box = any_pb2.Any()
    box.Pack(value_type.message_class(value=value))
    return box
