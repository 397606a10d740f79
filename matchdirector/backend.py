# SPDX-License-Identifier: GPL-2.0-or-later
"""Client library for the matchmaking backend."""

import contextlib
import logging

import aiohttp

import matchdirector.config
import matchdirector.rpc.client
from matchdirector.models import AssignmentFailure, Match, RecordError


class BackendClient:
    """Calls the backend service: a streaming ``fetch_matches`` method and a
    unary ``assign_tickets`` one. Use :func:`connect` to create one from the
    configuration.

    Used as an async context manager, the client opens one HTTP session
    shared by all its calls and closes it on exit::

        async with matchdirector.backend.connect() as backend:
            ...

    A session given as `http_client` is left to its owner.
    """

    def __init__(self, url, http_client=None):
        self.url = url
        self.http_client = http_client
        self._owns_http_client = False
        self._rpc = matchdirector.rpc.client.Client(
            url, http_client=http_client
        )

    async def __aenter__(self):
        if self.http_client is None:
            self.http_client = aiohttp.ClientSession()
            self._owns_http_client = True
            self._rpc = matchdirector.rpc.client.Client(
                self.url, http_client=self.http_client
            )
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        """Closes the session opened by the client, if any."""
        if not self._owns_http_client:
            return
        await self.http_client.close()
        self.http_client = None
        self._owns_http_client = False
        self._rpc = matchdirector.rpc.client.Client(self.url)

    @contextlib.asynccontextmanager
    async def fetch_matches(self, config, profile):
        """Runs `profile` through the match function of `config`.

        Yields an async iterator of the proposed :class:`Match` records::

            async with backend.fetch_matches(config, profile) as matches:
                async for match in matches:
                    ...
        """
        stream = await self._rpc.fetch_matches(
            config=config.to_dict(), profile=profile.to_dict()
        )
        async with stream as responses:
            yield _decode_matches(responses)

    async def assign_tickets(self, groups):
        """Sends assignment `groups`, returns the tickets that failed."""
        response = await self._rpc.assign_tickets(
            assignments=[group.to_dict() for group in groups]
        )
        return [
            AssignmentFailure.from_dict(f)
            for f in (response or {}).get('failures') or ()
        ]

    def __repr__(self):
        return f'<BackendClient {self.url}>'


async def _decode_matches(responses):
    async for response in responses:
        if not isinstance(response, dict):
            raise RecordError(f"invalid fetch response: {response!r}")
        yield Match.from_dict(response.get('match'))


def connect():
    cfg = matchdirector.config.load('director')
    url = cfg['director']['backend_url']
    logging.info('Creating backend client: url=%s', url)
    return BackendClient(url)
