# SPDX-License-Identifier: GPL-2.0-or-later
"""Records exchanged with the matchmaking backend.

Records are immutable and are (de)serialized to the backend's JSON
representation: camelCase field names, RFC 3339 timestamps, and empty fields
left out. Extensions are ``google.protobuf.Any`` messages, in their protobuf
JSON mapping.
"""

import dataclasses
import datetime
from typing import Any, Mapping, Optional, Tuple

from google.protobuf import any_pb2, json_format, timestamp_pb2
# Registers the wrapper types, so that extensions holding them decode.
from google.protobuf import wrappers_pb2  # noqa: F401


class RecordError(ValueError):
    """Raised when a record cannot be decoded."""

    pass


def parse_timestamp(value):
    """Parses an RFC 3339 timestamp into an aware datetime.

    The backend has a nanosecond resolution, datetime a microsecond one.
    """
    if not isinstance(value, str):
        raise RecordError(f"invalid timestamp: {value!r}")
    timestamp = timestamp_pb2.Timestamp()
    try:
        timestamp.FromJsonString(value)
    except ValueError as exn:
        raise RecordError(f"invalid timestamp: {value!r}") from exn
    return timestamp.ToDatetime().replace(tzinfo=datetime.timezone.utc)


def format_timestamp(value):
    timestamp = timestamp_pb2.Timestamp()
    timestamp.FromDatetime(value.astimezone(datetime.timezone.utc))
    return timestamp.ToJsonString()


def _compact(d):
    return {k: v for k, v in d.items() if v not in (None, '', {}, [], ())}


def _expect_mapping(data, what):
    if not isinstance(data, Mapping):
        raise RecordError(f"{what} is not an object: {data!r}")
    return data


def extensions_to_dict(extensions):
    """Renders `extensions` in the protobuf JSON mapping.

    Raises TypeError for a message type unknown to the descriptor pool.
    """
    return {
        key: json_format.MessageToDict(value)
        for key, value in extensions.items()
    }


def extensions_from_dict(data):
    if data is None:
        return {}
    data = _expect_mapping(data, 'extensions')
    extensions = {}
    for key, value in data.items():
        value = _expect_mapping(value, f"extension {key!r}")
        try:
            extensions[key] = json_format.ParseDict(value, any_pb2.Any())
        except (json_format.ParseError, TypeError, ValueError) as exn:
            raise RecordError(f"invalid extension {key!r}: {exn}") from exn
    return extensions


@dataclasses.dataclass(frozen=True)
class Assignment:
    """Connection information given to the players of a match."""

    connection: str = ''
    extensions: Mapping[str, any_pb2.Any] = dataclasses.field(
        default_factory=dict
    )

    def to_dict(self):
        return _compact({
            'connection': self.connection,
            'extensions': extensions_to_dict(self.extensions),
        })

    @classmethod
    def from_dict(cls, data):
        data = _expect_mapping(data, 'assignment')
        return cls(
            connection=data.get('connection', ''),
            extensions=extensions_from_dict(data.get('extensions')),
        )


@dataclasses.dataclass(frozen=True)
class Ticket:
    id: str
    create_time: Optional[datetime.datetime] = None
    search_fields: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    extensions: Mapping[str, any_pb2.Any] = dataclasses.field(
        default_factory=dict
    )
    assignment: Optional[Assignment] = None

    def to_dict(self):
        return _compact({
            'id': self.id,
            'createTime': (
                format_timestamp(self.create_time)
                if self.create_time else None
            ),
            'searchFields': dict(self.search_fields),
            'extensions': extensions_to_dict(self.extensions),
            'assignment': (
                self.assignment.to_dict() if self.assignment else None
            ),
        })

    @classmethod
    def from_dict(cls, data):
        data = _expect_mapping(data, 'ticket')
        create_time = data.get('createTime')
        assignment = data.get('assignment')
        return cls(
            id=data.get('id', ''),
            create_time=(
                parse_timestamp(create_time) if create_time else None
            ),
            search_fields=_expect_mapping(
                data.get('searchFields') or {}, 'search fields'
            ),
            extensions=extensions_from_dict(data.get('extensions')),
            assignment=(
                Assignment.from_dict(assignment) if assignment else None
            ),
        )


@dataclasses.dataclass(frozen=True)
class Match:
    """A group of tickets proposed by the backend to play together."""

    match_id: str
    match_profile: str = ''
    match_function: str = ''
    tickets: Tuple[Ticket, ...] = ()
    extensions: Mapping[str, any_pb2.Any] = dataclasses.field(
        default_factory=dict
    )

    @property
    def ticket_ids(self):
        return [ticket.id for ticket in self.tickets]

    def to_dict(self):
        return _compact({
            'matchId': self.match_id,
            'matchProfile': self.match_profile,
            'matchFunction': self.match_function,
            'tickets': [ticket.to_dict() for ticket in self.tickets],
            'extensions': extensions_to_dict(self.extensions),
        })

    @classmethod
    def from_dict(cls, data):
        data = _expect_mapping(data, 'match')
        match_id = data.get('matchId')
        if not isinstance(match_id, str) or not match_id:
            raise RecordError(f"match without id: {data!r}")
        return cls(
            match_id=match_id,
            match_profile=data.get('matchProfile', ''),
            match_function=data.get('matchFunction', ''),
            tickets=tuple(
                Ticket.from_dict(t) for t in data.get('tickets') or ()
            ),
            extensions=extensions_from_dict(data.get('extensions')),
        )


@dataclasses.dataclass(frozen=True)
class AssignmentGroup:
    """An assignment for a set of tickets."""

    ticket_ids: Tuple[str, ...]
    assignment: Assignment

    def to_dict(self):
        return {
            'ticketIds': list(self.ticket_ids),
            'assignment': self.assignment.to_dict(),
        }

    @classmethod
    def from_dict(cls, data):
        data = _expect_mapping(data, 'assignment group')
        return cls(
            ticket_ids=tuple(data.get('ticketIds') or ()),
            assignment=Assignment.from_dict(data.get('assignment') or {}),
        )


@dataclasses.dataclass(frozen=True)
class AssignmentFailure:
    """A ticket the backend could not assign."""

    ticket_id: str
    cause: str = 'UNKNOWN'

    @classmethod
    def from_dict(cls, data):
        data = _expect_mapping(data, 'assignment failure')
        return cls(
            ticket_id=data.get('ticketId', ''),
            cause=data.get('cause', 'UNKNOWN'),
        )


@dataclasses.dataclass(frozen=True)
class Pool:
    """A set of ticket filters. Filters are only interpreted by the backend,
    they are kept here in their JSON form, keyed by filter kind (e.g.
    ``doubleRangeFilters``).
    """

    name: str
    filters: Mapping[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self):
        return _compact({'name': self.name, **self.filters})

    @classmethod
    def from_dict(cls, data):
        data = _expect_mapping(data, 'pool')
        filters = {k: v for k, v in data.items() if k != 'name'}
        return cls(name=data.get('name', ''), filters=filters)


@dataclasses.dataclass(frozen=True)
class MatchProfile:
    """Describes the matches to request from the backend."""

    name: str
    pools: Tuple[Pool, ...] = ()
    extensions: Mapping[str, any_pb2.Any] = dataclasses.field(
        default_factory=dict
    )

    def to_dict(self):
        return _compact({
            'name': self.name,
            'pools': [pool.to_dict() for pool in self.pools],
            'extensions': extensions_to_dict(self.extensions),
        })

    @classmethod
    def from_dict(cls, data):
        data = _expect_mapping(data, 'match profile')
        return cls(
            name=data.get('name', ''),
            pools=tuple(Pool.from_dict(p) for p in data.get('pools') or ()),
            extensions=extensions_from_dict(data.get('extensions')),
        )


@dataclasses.dataclass(frozen=True)
class FunctionConfig:
    """Identifies the match function the backend runs for a profile."""

    host: str
    port: int
    type: str = 'GRPC'

    def to_dict(self):
        return {'host': self.host, 'port': self.port, 'type': self.type}

    @classmethod
    def from_dict(cls, data):
        data = _expect_mapping(data, 'function config')
        try:
            port = int(data.get('port', 0))
        except (TypeError, ValueError) as exn:
            raise RecordError(f"invalid port: {data!r}") from exn
        kind = str(data.get('type', 'GRPC')).upper()
        if kind not in ('GRPC', 'REST'):
            raise RecordError(f"invalid function type: {kind}")
        return cls(host=data.get('host', ''), port=port, type=kind)
