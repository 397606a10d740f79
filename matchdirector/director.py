# SPDX-License-Identifier: GPL-2.0-or-later
"""The director periodically asks the backend for the matches of a profile,
gets them assigned by an :class:`Assigner` and sends the assignments back.

Each tick fetches a batch of matches then, if the batch is not empty,
assigns it. Both backend calls are retried on transient failures following
a :class:`~matchdirector.backoff.Backoff` policy, a fresh sequence per call.
Any other failure stops the director: restarting it is up to the caller.
"""

import asyncio
import enum
import logging

from matchdirector.backoff import Backoff, retry
from matchdirector.dump import dump_assignment
from matchdirector.errors import is_retryable
from matchdirector.extensions import get_str_extension
from matchdirector.models import Assignment, AssignmentGroup
from matchdirector.monitoring import (
    director_assign_latency_seconds,
    director_assigned_tickets,
    director_assignment_failures,
    director_fatal_errors,
    director_fetch_latency_seconds,
    director_fetched_matches,
    director_ticks,
)

# Match extension overriding the connection given by StaticAssigner.
CONNECTION_EXTENSION = 'connection'


class DirectorError(Exception):
    pass


class FetchError(DirectorError):
    pass


class AssignError(DirectorError):
    pass


class State(enum.Enum):
    IDLE = 'idle'
    FETCHING_MATCHES = 'fetching matches'
    ASSIGNING_MATCHES = 'assigning matches'
    STOPPED = 'stopped'


class Assigner:
    """Turns matches into assignment groups.

    Subclasses implement :meth:`assign`. It is called once per non-empty
    batch, never concurrently.
    """

    async def assign(self, matches):
        raise NotImplementedError()


class StaticAssigner(Assigner):
    """Assigns all the tickets of each match to the same connection."""

    def __init__(self, connection):
        self.connection = connection

    async def assign(self, matches):
        return [
            AssignmentGroup(
                ticket_ids=tuple(match.ticket_ids),
                assignment=Assignment(
                    connection=get_str_extension(match, CONNECTION_EXTENSION)
                    or self.connection
                ),
            )
            for match in matches
        ]


class Director:
    def __init__(self, backend, profile, function_config, assigner, *,
                 backoff=None, retryable=is_retryable, logger=None):
        self.backend = backend
        self.profile = profile
        self.function_config = function_config
        self.assigner = assigner
        self.backoff = backoff if backoff is not None else Backoff()
        self.retryable = retryable
        self.logger = logger or logging.getLogger(__name__)
        self.state = State.IDLE

    def __repr__(self):
        return f'<Director {self.profile.name} {self.state.value}>'

    async def fetch_matches(self):
        """Returns the matches proposed by the backend, in a single call."""
        matches = []
        try:
            async with self.backend.fetch_matches(
                self.function_config, self.profile
            ) as stream:
                async for match in stream:
                    matches.append(match)
        except Exception as exn:
            raise FetchError(
                f"failed to recv matches for {self.profile.name}: {exn}"
            ) from exn
        return matches

    async def assign_tickets(self, matches):
        """Assigns `matches` and sends the assignments to the backend.

        The assigner is called once. Sending the assignments is retried.
        """
        try:
            groups = await self.assigner.assign(matches)
        except Exception as exn:
            raise AssignError(f"failed to assign tickets: {exn}") from exn

        try:
            failures = await retry(
                lambda: self.backend.assign_tickets(groups),
                self.backoff,
                self.retryable,
                name='assign_tickets',
                logger=self.logger,
            )
        except Exception as exn:
            self.logger.error("failed to send assignments: %s", exn)
            raise AssignError(f"failed to assign tickets: {exn}") from exn

        for group in groups:
            self.logger.info("assigned %s to %s", list(group.ticket_ids),
                             dump_assignment(group.assignment))
            director_assigned_tickets.inc(len(group.ticket_ids))
        for failure in failures:
            self.logger.warning("ticket %s was not assigned: %s",
                                failure.ticket_id, failure.cause)
        director_assignment_failures.inc(len(failures))
        return groups

    async def tick(self):
        """Fetches then assigns one batch of matches.

        Returns the sent assignment groups.
        """
        director_ticks.inc()

        self.state = State.FETCHING_MATCHES
        with director_fetch_latency_seconds.time():
            try:
                matches = await retry(
                    self.fetch_matches,
                    self.backoff,
                    self.retryable,
                    name='fetch_matches',
                    logger=self.logger,
                )
            except Exception as exn:
                self.logger.error("failed to fetch matches: %s", exn)
                raise
        director_fetched_matches.inc(len(matches))

        if not matches:
            self.logger.debug("no match for profile %s", self.profile.name)
            self.state = State.IDLE
            return []

        self.logger.info("fetched %d matches for profile %s", len(matches),
                         self.profile.name)
        self.state = State.ASSIGNING_MATCHES
        with director_assign_latency_seconds.time():
            groups = await self.assign_tickets(matches)
        self.state = State.IDLE
        return groups

    async def run(self, tick_rate):
        """Ticks every `tick_rate` seconds until cancelled or until a tick
        fails.

        A tick running longer than `tick_rate` delays the next one, missed
        ticks are not queued.
        """
        if tick_rate <= 0:
            raise ValueError(f"invalid tick rate: {tick_rate}")
        self.logger.info("director started (profile: %s, tick rate: %ss)",
                         self.profile.name, tick_rate)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + tick_rate
        try:
            while True:
                await asyncio.sleep(max(0, deadline - loop.time()))
                await self.tick()
                deadline += tick_rate
                now = loop.time()
                if deadline < now:
                    deadline += (now - deadline) // tick_rate * tick_rate
        except asyncio.CancelledError:
            self.logger.info("director stopped")
            raise
        except Exception:
            director_fatal_errors.inc()
            raise
        finally:
            self.state = State.STOPPED
