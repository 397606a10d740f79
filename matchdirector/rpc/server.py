# SPDX-License-Identifier: GPL-2.0-or-later
"""RPC server: exposes the remote methods of a :class:`BaseRPCApp` subclass.

Unary methods are coroutines, server-streaming methods are async generators.
Exceptions are sent back to the caller along with a status code: the code of
a :class:`StatusError`, UNIMPLEMENTED for unknown methods, INVALID_ARGUMENT
for undecodable requests and UNKNOWN for anything else.
"""

import inspect
import json
import logging
import traceback

import aiohttp.web

from matchdirector.rpc import monitoring
from matchdirector.rpc.status import Code, StatusError

GENERATOR_CONTENT_TYPE = "application/json; generator"


class MethodError(Exception):
    """Raised for a call to a method the application does not expose."""


def remote_method(func):
    """Marks a coroutine or async generator method as callable remotely."""
    func.remote_method = True
    return func


def is_remote_method(obj):
    return callable(obj) and getattr(obj, "remote_method", False)


class MethodCollection(type):
    """Gathers the remote methods of a class, inherited ones included, in its
    ``REMOTE_METHODS`` mapping. Stored methods are unbound.
    """

    def __init__(cls, name, bases, dct):
        super().__init__(name, bases, dct)
        methods = {}
        for base in reversed(cls.__mro__[1:]):
            methods.update(getattr(base, "REMOTE_METHODS", {}))
        for attr, obj in dct.items():
            if not is_remote_method(obj):
                continue
            if not (inspect.iscoroutinefunction(obj)
                    or inspect.isasyncgenfunction(obj)):
                raise RuntimeError(f"remote method {attr} is not async")
            methods[attr] = obj
        cls.REMOTE_METHODS = methods


def exception_code(exn):
    """Returns the status code sent to the caller for `exn`."""
    if isinstance(exn, StatusError):
        return exn.code
    if isinstance(exn, MethodError):
        return Code.UNIMPLEMENTED
    if isinstance(exn, json.JSONDecodeError):
        return Code.INVALID_ARGUMENT
    return Code.UNKNOWN


def exception_document(exn):
    if isinstance(exn, StatusError):
        message = exn.status.message
    else:
        message = str(exn)
    return {
        "type": "exception",
        "exn_type": type(exn).__name__,
        "exn_message": message,
        "exn_code": exception_code(exn).display_name,
        "exn_traceback": traceback.format_tb(exn.__traceback__),
    }


def result_document(data):
    return {"type": "result", "data": data}


def encode_line(document):
    return json.dumps(document).encode() + b"\n"


def error_response(exn, http_error=aiohttp.web.HTTPInternalServerError):
    return http_error(
        text=json.dumps(exception_document(exn)),
        content_type="application/json",
    )


class RemoteCallHandler:
    """Serves one ``/call/<method>`` request on `rpc_object`."""

    def __init__(self, request, rpc_object):
        self.request = request
        self.rpc_object = rpc_object
        self.method_name = request.match_info["name"]

    def _log_failure(self, exn):
        # Only called from an except block.
        if isinstance(exn, StatusError):
            logging.info("remote method %s failed: %s", self.method_name, exn)
        else:
            logging.exception("remote method %s raised:", self.method_name)

    async def _read_call(self):
        if self.request.method != "POST":
            return [], {}
        try:
            call = await self.request.json()
        except json.JSONDecodeError as exn:
            raise error_response(exn, aiohttp.web.HTTPBadRequest)
        if not isinstance(call, dict):
            raise error_response(
                StatusError(Code.INVALID_ARGUMENT, "call must be an object"),
                aiohttp.web.HTTPBadRequest,
            )
        return call.get("args", []), call.get("kwargs", {})

    @monitoring._observe_rpc_call_in
    async def __call__(self):
        args, kwargs = await self._read_call()
        method = self.rpc_object.REMOTE_METHODS.get(self.method_name)
        if method is None:
            raise error_response(
                MethodError(self.method_name), aiohttp.web.HTTPNotFound
            )
        logging.debug(
            "RPC <%s> %s(*%r, **%r)",
            self.request.remote, self.method_name, args, kwargs,
        )
        if inspect.isasyncgenfunction(method):
            return await self._stream(method, args, kwargs)
        return await self._unary(method, args, kwargs)

    async def _unary(self, method, args, kwargs):
        try:
            result = await method(self.rpc_object, *args, **kwargs)
        except Exception as exn:
            self._log_failure(exn)
            raise error_response(exn)
        return aiohttp.web.Response(
            body=encode_line(result_document(result)),
            content_type="application/json",
        )

    async def _stream(self, method, args, kwargs):
        try:
            results = method(self.rpc_object, *args, **kwargs)
        except TypeError as exn:
            self._log_failure(exn)
            raise error_response(exn)

        response = aiohttp.web.StreamResponse(
            headers={"Content-Type": GENERATOR_CONTENT_TYPE}
        )
        await response.prepare(self.request)
        try:
            async for result in results:
                await response.write(encode_line(result_document(result)))
        except Exception as exn:
            # Headers are sent: the failure ends the stream instead.
            self._log_failure(exn)
            await response.write(encode_line(exception_document(exn)))
        await response.write_eof()
        return response


class BaseRPCApp(metaclass=MethodCollection):
    """Base class for RPC applications.

    Subclass it, decorate the exposed methods with :func:`remote_method` and
    serve the ``app`` attribute (or call :meth:`run`).
    """

    def __init__(self, **kwargs):
        async def handler(request):
            return await RemoteCallHandler(request, self)()

        self.app = aiohttp.web.Application(
            client_max_size=64 * 1024 * 1024, **kwargs
        )
        self.app.router.add_route(
            "*", r"/call/{name:[0-9a-zA-Z_]+}", handler
        )

    def run(self, **kwargs):
        aiohttp.web.run_app(self.app, print=lambda *_: None, **kwargs)
