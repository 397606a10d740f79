# SPDX-License-Identifier: GPL-2.0-or-later

import contextlib
import json
import logging
from urllib.parse import urljoin

import aiohttp

from matchdirector.rpc.monitoring import rpc_call_out
from matchdirector.rpc.server import GENERATOR_CONTENT_TYPE
from matchdirector.rpc.status import Code, StatusError

# Codes of the HTTP errors answered without an RPC document, e.g. by a proxy.
HTTP_STATUS_CODES = {
    400: Code.INTERNAL,
    401: Code.UNAUTHENTICATED,
    403: Code.PERMISSION_DENIED,
    404: Code.UNIMPLEMENTED,
    429: Code.UNAVAILABLE,
    502: Code.UNAVAILABLE,
    503: Code.UNAVAILABLE,
    504: Code.UNAVAILABLE,
}


class BaseError(Exception):
    """Base class for all exceptions here."""

    pass


class InternalError(BaseError):
    """Raised when there is a protocol failure somewhere."""

    pass


class RemoteError(BaseError, StatusError):
    """Raised when the remote procedure raised an error."""

    def __init__(self, type, message, code=Code.UNKNOWN):
        self.type = type
        self.message = message
        StatusError.__init__(self, code, message)


class Client:
    """RPC client: connect to a server and perform remote calls."""

    def __init__(self, base_url, http_client=None):
        self._base_url = base_url
        # For testing & context(), we have to use an existing client.
        self._http_client = http_client

    @contextlib.asynccontextmanager
    async def _client(self):
        if self._http_client is not None:
            # The lifecycle of existing clients are handled externally. It's
            # important not to close (__aexit__) them ourselves.
            yield self._http_client
            return

        async with aiohttp.ClientSession() as client:
            yield client

    def _call_params(self, method, args, kwargs):
        arguments = {"args": args, "kwargs": kwargs}
        url = urljoin(self._base_url, f"call/{method}")
        return url, arguments

    async def _call_method(self, method, args, kwargs):
        """Calls the remote `method` passing `args` and `kwargs` to it.

        `args` must be a JSON-serializable list of positional arguments while
        `kwargs` must be a JSON-serializable dictionary of keyword arguments.

        Depending on the nature and behavior of the remote method, either:
            * returns a result;
            * returns a async context that gives an async generator of results;
            * raises a RemoteError.

        Raises a StatusError with the UNAVAILABLE code when the server cannot
        be reached, a StatusError coded from HTTP_STATUS_CODES for HTTP errors
        without an RPC document, and an InternalError for any other error
        that isn't caused by the remote.
        """
        url, data = self._call_params(method, args, kwargs)

        stack = contextlib.AsyncExitStack()
        try:
            client = await stack.enter_async_context(self._client())
            resp = await stack.enter_async_context(
                client.post(url, json=data)
            )
        except (TypeError, ValueError):
            await stack.aclose()
            raise ValueError(
                f"JSON cannot encode argument types: {args!r}, {kwargs!r}"
            )
        except (aiohttp.ClientConnectionError, OSError) as exn:
            await stack.aclose()
            raise StatusError(
                Code.UNAVAILABLE, f"cannot call {method} on <{url}>: {exn}"
            ) from exn
        except BaseException:
            await stack.aclose()
            raise

        content_type = resp.headers.get("Content-Type", "")

        if content_type == GENERATOR_CONTENT_TYPE:
            return self._generator_context(stack, resp)

        try:
            if content_type.startswith("application/json"):
                result = await resp.json()
                return self._parse_response(result)
            if resp.status >= 400:
                raise StatusError(
                    HTTP_STATUS_CODES.get(resp.status, Code.UNKNOWN),
                    f"{method} failed with HTTP {resp.status}: "
                    f"{(await resp.text())[:256]}",
                )
            raise InternalError(f"Unknown Content-Type: '{content_type}'.")
        except aiohttp.ClientPayloadError as exn:
            raise StatusError(
                Code.UNAVAILABLE, f"{method} response interrupted: {exn}"
            ) from exn
        finally:
            await stack.aclose()

    def _parse_response(self, result):
        try:
            result_type = result["type"]
        except (TypeError, KeyError):
            raise InternalError(f"Invalid response: {result!r}") from None
        if result_type == "result":
            # There is nothing more to do than returning the actual result.
            return result["data"]
        elif result_type == "exception":
            # Just raise a RemoteError with interesting data.
            self._handle_exception(result)
        else:
            # There should not be any other possibility.
            raise InternalError(f"Invalid result type: {result_type}")

    def _handle_exception(self, data):
        """Handle an exception from a remote call."""
        raise RemoteError(
            data["exn_type"],
            data["exn_message"],
            Code.parse(data.get("exn_code")),
        )

    @contextlib.asynccontextmanager
    async def _generator_context(self, stack, resp):
        async def generator():
            try:
                async for line in resp.content:
                    try:
                        message = json.loads(line)
                    except ValueError as exn:
                        raise InternalError(
                            f"Malformed stream message: {line[:64]!r}"
                        ) from exn
                    yield self._parse_response(message)
            except aiohttp.ClientPayloadError as exn:
                raise StatusError(
                    Code.UNAVAILABLE, f"stream interrupted: {exn}"
                ) from exn

        try:
            yield generator()
        finally:
            await stack.aclose()

    def __getattr__(self, method):
        """Returns a callable to invoke a remote procedure."""
        if method.startswith("__"):
            raise AttributeError(method)

        async def proxy(*args, **kwargs):
            logging.debug("calling %s on <%s>", method, self._base_url)
            with rpc_call_out.labels(method=method).time():
                return await self._call_method(method, args, kwargs)

        return proxy
