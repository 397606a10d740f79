# SPDX-License-Identifier: GPL-2.0-or-later
import asyncio
from unittest.mock import AsyncMock

import aiohttp
import pytest

from matchdirector.backend import BackendClient
from matchdirector.backoff import Backoff
from matchdirector.director import Assigner, Director
from matchdirector.models import (
    Assignment,
    AssignmentGroup,
    FunctionConfig,
    MatchProfile,
    Pool,
)
from matchdirector.rpc.server import BaseRPCApp, remote_method


@pytest.fixture
def dirconf(mocker):
    """Mocks :func:`matchdirector.config.load` for a given profile.

    Usage to override the "director" profile with one "foo" config key::

        @pytest.fixture
        def myconf(dirconf):
            dirconf("director", foo="bar")
            # Feel free to make other calls to dirconf() here.

        def test_something(myconf):
            ...
    """
    config_registry = {}

    def mocked_loader(profile):
        try:
            return config_registry[profile]
        except KeyError:
            raise KeyError(
                f"Application loads config profile '{profile}', which is not "
                f"configured in dirconf fixture."
            ) from None

    def configure_func(profile, **kwargs):
        config_registry[profile] = kwargs

    config_load = mocker.patch("matchdirector.config.load")
    config_load.side_effect = mocked_loader
    yield configure_func


@pytest.fixture
def aiohttp_trace_ended():
    """Retains URLs of ended requests. Useful to check they were closed.

    Typical usage::

        # aiohttp_client fixture is provided by pytest-aiohttp.
        def test_something(aiohttp_client, aiohttp_trace_ended):
            trace, ended_urls = aiohttp_trace_ended
            app = create_aiohttp_app()
            client = await aiohttp_client(app, trace_configs=[trace])

            await client.get("/foo")
            assert "/foo" in ended_urls[0]
    """
    ended_request_urls = []

    async def on_request_end(session, trace_config_ctx, params):
        ended_request_urls.append(str(params.url))

    trace = aiohttp.TraceConfig()
    trace.on_request_end.append(on_request_end)
    return trace, ended_request_urls


class FakeBackend(BaseRPCApp):
    """Scripted backend. Each call consumes the next outcome of its script,
    falling back to the default outcome. An outcome is either an exception
    to raise or the value to answer.

    With `stall_fetch` set, fetches hang after sending each match. With
    `stall_assign` set, assignments hang on receipt. Both wait for `release`.
    """

    def __init__(self):
        super().__init__()
        self.fetch_script = []
        self.default_fetch = []
        self.fetch_requests = []
        self.assign_script = []
        self.default_assign = {}
        self.assign_requests = []
        self.stall_fetch = False
        self.stall_assign = False
        self.stalled = asyncio.Event()
        self.release = asyncio.Event()

    async def _stall(self):
        self.stalled.set()
        await self.release.wait()

    @remote_method
    async def fetch_matches(self, config, profile):
        self.fetch_requests.append((config, profile))
        if self.fetch_script:
            outcome = self.fetch_script.pop(0)
        else:
            outcome = self.default_fetch
        if isinstance(outcome, Exception):
            raise outcome
        for match in outcome:
            yield {'match': match}
            if self.stall_fetch:
                await self._stall()

    @remote_method
    async def assign_tickets(self, assignments):
        self.assign_requests.append(assignments)
        if self.stall_assign:
            await self._stall()
        if self.assign_script:
            outcome = self.assign_script.pop(0)
        else:
            outcome = self.default_assign
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingAssigner(Assigner):
    """Assigns every match to 'test-connection' and records the calls."""

    def __init__(self):
        self.calls = []
        self.called = asyncio.Event()

    async def assign(self, matches):
        self.calls.append([match.match_id for match in matches])
        self.called.set()
        return [
            AssignmentGroup(
                ticket_ids=tuple(match.ticket_ids),
                assignment=Assignment(connection='test-connection'),
            )
            for match in matches
        ]


@pytest.fixture
def fake_backend():
    backend = FakeBackend()
    yield backend
    backend.release.set()


@pytest.fixture
async def backend_client(aiohttp_client, fake_backend):
    http_client = await aiohttp_client(fake_backend.app)
    return BackendClient('/', http_client=http_client)


@pytest.fixture
def assigner():
    return RecordingAssigner()


@pytest.fixture
def profile():
    return MatchProfile(
        name='test-profile',
        pools=(Pool('everyone', {'tagPresentFilters': [{'tag': 'mode'}]}),),
    )


@pytest.fixture
def function_config():
    return FunctionConfig(host='om-function', port=50502, type='GRPC')


@pytest.fixture
def fast_backoff():
    return Backoff(initial=0.001, cap=0.01, max_retries=10)


@pytest.fixture
def director(backend_client, profile, function_config, assigner,
             fast_backoff):
    return Director(backend_client, profile, function_config, assigner,
                    backoff=fast_backoff)


@pytest.fixture
def store():
    """A mocked asyncio Redis client."""
    return AsyncMock()
