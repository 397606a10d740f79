# SPDX-License-Identifier: GPL-2.0-or-later
import asyncio
import contextlib
import logging

import aiohttp.web
import pytest

import matchdirector.rpc.client
import matchdirector.rpc.server
from matchdirector.errors import is_retryable
from matchdirector.rpc import remote_method
from matchdirector.rpc.status import Code, Status, StatusError


@contextlib.contextmanager
def disable_logging():
    logger = logging.getLogger()
    logger.disabled = True
    try:
        yield
    finally:
        logger.disabled = False


class RPCServer(matchdirector.rpc.server.BaseRPCApp):
    @remote_method
    async def return_number(self):
        return 42

    @remote_method
    async def return_string(self):
        return 'director'

    @remote_method
    async def return_list(self):
        return list(range(10))

    @remote_method
    async def return_input(self, inp):
        return inp

    @remote_method
    async def count(self, n):
        if n == float('inf'):
            while True:
                yield 42
                await asyncio.sleep(0.01)
        else:
            for i in range(n):
                yield i

    @remote_method
    async def count_then_fail(self, n):
        for i in range(n):
            yield i
        raise StatusError(Code.UNAVAILABLE, 'match function is down')

    @remote_method
    async def return_args_kwargs(self, arg1, arg2, *, kw1=None, kw2=None):
        return [[arg1, arg2], {'kw1': kw1, 'kw2': kw2}]

    @remote_method
    async def raises_valueerror(self):
        # Disable exception logging to avoid seeing the intentional raise.
        with disable_logging():
            raise ValueError("Monde de merde.")

    @remote_method
    async def raises_not_found(self):
        raise StatusError(Code.NOT_FOUND, 'ticket t1 not found')

    @remote_method
    async def slow(self):
        await asyncio.sleep(1)
        return 42


@pytest.fixture
def rpc_server():
    return RPCServer()


@pytest.fixture
async def http_client(aiohttp_client, aiohttp_trace_ended, rpc_server):
    trace, _ = aiohttp_trace_ended
    return await aiohttp_client(rpc_server.app, trace_configs=[trace])


@pytest.fixture
async def rpc_client(http_client, rpc_server):
    return matchdirector.rpc.client.Client("/", http_client=http_client)


async def test_number(rpc_client):
    assert (await rpc_client.return_number()) == 42


async def test_string(rpc_client):
    assert (await rpc_client.return_string()) == 'director'


async def test_list(rpc_client):
    assert (await rpc_client.return_list()) == list(range(10))


async def test_nested(rpc_client):
    obj = {'test': 72, 'list': [1, 42, 33, {'object': '3'}]}
    assert (await rpc_client.return_input(obj)) == obj


async def test_args_kwargs(rpc_client):
    res = rpc_client.return_args_kwargs(1, 'c', kw1='a', kw2=None)
    assert (await res) == [[1, 'c'], {'kw1': 'a', 'kw2': None}]


async def test_missing_method(rpc_client):
    with pytest.raises(matchdirector.rpc.client.RemoteError) as e:
        await rpc_client.missing_method()
    assert e.value.type == 'MethodError'
    assert e.value.code == Code.UNIMPLEMENTED


async def test_raises_valueerror(rpc_client):
    with pytest.raises(matchdirector.rpc.client.RemoteError) as e:
        await rpc_client.raises_valueerror()
    assert e.value.type == 'ValueError'
    assert e.value.message == 'Monde de merde.'
    assert e.value.code == Code.UNKNOWN


async def test_raises_status(rpc_client):
    with pytest.raises(StatusError) as e:
        await rpc_client.raises_not_found()
    assert e.value.status == Status(Code.NOT_FOUND, 'ticket t1 not found')
    assert str(e.value) == (
        'rpc error: code = NotFound desc = ticket t1 not found'
    )


async def test_call_normal_method_as_generate(rpc_client):
    # Depending on the Python version, either error is raised.
    with pytest.raises((AttributeError, TypeError)):
        async with await rpc_client.return_string() as gen:
            async for x in gen:
                pass


async def test_generator(rpc_client):
    async with await rpc_client.count(n=4) as gen:
        msgs = [msg async for msg in gen]
    assert msgs == [0, 1, 2, 3]


async def test_empty_generator(rpc_client):
    async with await rpc_client.count(n=0) as gen:
        msgs = [msg async for msg in gen]
    assert msgs == []


async def test_generator_fails_midstream(rpc_client):
    msgs = []
    with pytest.raises(matchdirector.rpc.client.RemoteError) as e:
        async with await rpc_client.count_then_fail(2) as gen:
            async for msg in gen:
                msgs.append(msg)
    assert msgs == [0, 1]
    assert e.value.code == Code.UNAVAILABLE
    assert e.value.message == 'match function is down'


async def test_infinite_generator(rpc_client, aiohttp_trace_ended):
    async def read_n(n):
        msgs = []
        async with await rpc_client.count(float('inf')) as gen:
            async for msg in gen:
                msgs.append(msg)
                if len(msgs) == n:
                    return msgs

    _, ended_urls = aiohttp_trace_ended
    ended_urls.clear()

    # Stop reading early.
    assert (await read_n(2)) == [42, 42]
    # Connection was closed cleanly.
    assert sum(1 for url in ended_urls if "/count" in url) == 1
    ended_urls.clear()

    # Read without limit for a while. Cancel the reading coroutine.
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(read_n(0), timeout=0.5)
    # Connection was closed cleanly.
    assert sum(1 for url in ended_urls if "/count" in url) == 1
    ended_urls.clear()

    # We can resume reading.
    assert (await read_n(3)) == [42, 42, 42]
    # Connection was closed cleanly.
    assert sum(1 for url in ended_urls if "/count" in url) == 1


async def test_unreachable_server_is_unavailable(unused_tcp_port):
    client = matchdirector.rpc.client.Client(
        f"http://127.0.0.1:{unused_tcp_port}/"
    )
    with pytest.raises(StatusError) as e:
        await client.return_number()
    assert e.value.code == Code.UNAVAILABLE
    assert isinstance(e.value.__cause__, OSError)


def test_remote_methods_must_be_coroutines():
    with pytest.raises(RuntimeError):
        class BadServer(matchdirector.rpc.server.BaseRPCApp):
            @remote_method
            def not_a_coroutine(self):
                pass


def test_code_rendering():
    assert Code.INVALID_ARGUMENT.display_name == 'InvalidArgument'
    assert Code.OK.display_name == 'OK'
    assert Code.parse('Unavailable') is Code.UNAVAILABLE
    assert Code.parse('DEADLINE_EXCEEDED') is Code.DEADLINE_EXCEEDED
    assert Code.parse(14) is Code.UNAVAILABLE
    assert Code.parse(99) is Code.UNKNOWN
    assert Code.parse(None) is Code.UNKNOWN


def plain_http_app(status, text):
    """Answers every call like a proxy would, without an RPC document."""
    async def handler(request):
        return aiohttp.web.Response(status=status, text=text)

    app = aiohttp.web.Application()
    app.router.add_route('*', '/call/{name}', handler)
    return app


@pytest.mark.parametrize('status, code', [
    (502, Code.UNAVAILABLE),
    (503, Code.UNAVAILABLE),
    (504, Code.UNAVAILABLE),
    (404, Code.UNIMPLEMENTED),
    (500, Code.UNKNOWN),
])
async def test_http_error_without_rpc_document(aiohttp_client, status, code):
    http_client = await aiohttp_client(
        plain_http_app(status, 'upstream restarting')
    )
    client = matchdirector.rpc.client.Client('/', http_client=http_client)
    with pytest.raises(StatusError) as e:
        await client.return_number()
    assert e.value.code == code
    assert 'upstream restarting' in str(e.value)


async def test_proxy_unavailable_is_retryable(aiohttp_client):
    http_client = await aiohttp_client(plain_http_app(503, 'try later'))
    client = matchdirector.rpc.client.Client('/', http_client=http_client)
    with pytest.raises(StatusError) as e:
        await client.return_number()
    assert is_retryable(e.value)


async def test_unknown_content_type(aiohttp_client):
    http_client = await aiohttp_client(plain_http_app(200, 'hello'))
    client = matchdirector.rpc.client.Client('/', http_client=http_client)
    with pytest.raises(matchdirector.rpc.client.InternalError):
        await client.return_number()


async def test_cancelled_call_closes_session(mocker, http_client):
    sessions = []
    session_class = aiohttp.ClientSession

    def make_session(*args, **kwargs):
        session = session_class(*args, **kwargs)
        sessions.append(session)
        return session

    mocker.patch('aiohttp.ClientSession', side_effect=make_session)
    client = matchdirector.rpc.client.Client(str(http_client.make_url('/')))
    task = asyncio.create_task(client.slow())
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(sessions) == 1
    assert sessions[0].closed
