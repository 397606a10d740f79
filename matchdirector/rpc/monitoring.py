# SPDX-License-Identifier: GPL-2.0-or-later

from functools import wraps

from prometheus_client import Summary


rpc_call_in = Summary(
    'rpc_call_in',
    'Summary of the rpc calls received',
    ['method'])

rpc_call_out = Summary(
    'rpc_call_out',
    'Summary of the rpc calls sent',
    ['method'])


def _observe_rpc_call_in(f):
    @wraps(f)
    async def _wrapper(handler):
        with rpc_call_in.labels(method=handler.method_name).time():
            return await f(handler)

    return _wrapper

# Monitoring is started by the application using the rpc library
