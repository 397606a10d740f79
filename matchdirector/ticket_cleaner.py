# SPDX-License-Identifier: GPL-2.0-or-later
"""Removes stale tickets from the backend's Redis store.

Usage::

    python -m matchdirector.ticket_cleaner <REDIS_ADDR> <STALE_TIME>
    python -m matchdirector.ticket_cleaner 127.0.0.1:6379 10m

Every ticket listed in the ``allTickets`` set and created more than
STALE_TIME ago is removed from the set and from the store. Unreadable
tickets are logged and kept.
"""

import argparse
import asyncio
import base64
import binascii
import datetime
import json
import logging
import re
import sys

import redis.asyncio
import redis.exceptions

import matchdirector.log
from matchdirector.models import RecordError, Ticket

ALL_TICKETS = 'allTickets'

_DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1,
    'm': 60,
    'h': 3600,
}
_DURATION_RE = re.compile(r'(\d+\.?\d*|\.\d+)(ns|us|µs|ms|s|m|h)')


class CleanerError(Exception):
    """Raised on store failures that abort the cleaning."""

    pass


def parse_duration(value):
    """Parses a duration like ``10m``, ``1h30m`` or ``500ms``."""
    text = value.strip()
    sign = 1
    if text[:1] in ('+', '-'):
        sign = -1 if text[0] == '-' else 1
        text = text[1:]
    if text == '0':
        return datetime.timedelta(0)
    pos, seconds = 0, 0.0
    for m in _DURATION_RE.finditer(text):
        if m.start() != pos:
            break
        seconds += float(m[1]) * _DURATION_UNITS[m[2]]
        pos = m.end()
    if not text or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return datetime.timedelta(seconds=sign * seconds)


def decode_ticket(data):
    """Decodes a stored ticket. Some stores keep records base64-encoded."""
    if isinstance(data, bytes):
        data = data.decode('utf-8', errors='replace')
    raw = data
    try:
        raw = base64.b64decode(data, validate=True).decode('utf-8')
    except (binascii.Error, ValueError):
        pass
    try:
        return Ticket.from_dict(json.loads(raw))
    except ValueError as exn:
        raise RecordError(f"failed to decode ticket: {exn}") from exn


async def find_stale_tickets(client, stale_time, now=None):
    """Returns the keys of the tickets created at least `stale_time` ago."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    try:
        keys = await client.smembers(ALL_TICKETS)
    except redis.exceptions.RedisError as exn:
        raise CleanerError(
            f"failed to SMEMBERS {ALL_TICKETS}: {exn}"
        ) from exn

    stale = []
    for key in sorted(keys):
        try:
            data = await client.get(key)
        except (redis.exceptions.ConnectionError,
                redis.exceptions.TimeoutError) as exn:
            raise CleanerError(f"failed to GET ticket {key}: {exn}") from exn
        except redis.exceptions.RedisError as exn:
            logging.warning("failed to GET ticket %s: %s", key, exn)
            continue
        if data is None:
            logging.warning("ticket %s listed but not stored", key)
            continue
        try:
            ticket = decode_ticket(data)
        except RecordError as exn:
            logging.warning("ticket %s: %s", key, exn)
            continue
        if ticket.create_time is None:
            logging.warning("ticket %s has no creation time", key)
            continue
        if now - ticket.create_time >= stale_time:
            logging.info("delete '%s' (created at %s)", ticket.id,
                         ticket.create_time)
            stale.append(key)
    return stale


async def clean(client, stale_time, now=None):
    """Removes stale tickets from the store, returns their keys."""
    keys = await find_stale_tickets(client, stale_time, now)
    if not keys:
        return keys
    try:
        await client.srem(ALL_TICKETS, *keys)
    except redis.exceptions.RedisError as exn:
        raise CleanerError(
            f"failed to remove ticket keys from {ALL_TICKETS}: {exn}"
        ) from exn
    try:
        await client.delete(*keys)
    except redis.exceptions.RedisError as exn:
        raise CleanerError(f"failed to delete ticket keys: {exn}") from exn
    return keys


async def run(addr, stale_time):
    client = redis.asyncio.from_url(f'redis://{addr}', decode_responses=True)
    try:
        try:
            await client.ping()
        except redis.exceptions.RedisError as exn:
            raise CleanerError(
                f"failed to connect to Redis: {exn}"
            ) from exn
        keys = await clean(client, stale_time)
        logging.info("removed %d stale tickets", len(keys))
    finally:
        await client.aclose()


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='om-ticket-cleaner',
        description='Remove stale tickets from the backend Redis store.',
        epilog='Example: om-ticket-cleaner 127.0.0.1:6379 10m',
    )
    parser.add_argument('addr', metavar='REDIS_ADDR', help='host:port')
    parser.add_argument(
        'stale_time', metavar='STALE_TIME', type=parse_duration,
        help='age from which tickets are removed, e.g. 10m or 1h30m',
    )
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose mode.')
    args = parser.parse_args(argv)

    matchdirector.log.setup_logging('ticket-cleaner', verbose=args.verbose,
                                    local=True)
    try:
        asyncio.run(run(args.addr, args.stale_time))
    except CleanerError as exn:
        logging.critical('%s', exn)
        sys.exit(1)


if __name__ == '__main__':
    main()
