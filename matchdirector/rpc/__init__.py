# SPDX-License-Identifier: GPL-2.0-or-later
"""JSON over HTTP remote procedure calls, with unary and server-streaming
methods and status-coded failures.
"""

from matchdirector.rpc.server import remote_method  # noqa: F401
from matchdirector.rpc.status import Code, Status, StatusError  # noqa: F401
