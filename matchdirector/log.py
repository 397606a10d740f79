# SPDX-License-Identifier: GPL-2.0-or-later

import os

import logging
import logging.handlers


# Do not log to stderr if started by systemd
LOG_STDERR = os.getppid() != 1
SYSLOG_SOCKET = '/dev/log'


def setup_logging(program, verbose=False, local=LOG_STDERR):
    """Sets up the default Python logger.

    Log to syslog when available, optionaly log to stderr.

    Args:
      program: Name of the program logging informations.
      verbose: If true, log more messages (DEBUG instead of INFO).
      local: If true, log to stderr as well as syslog.
    """
    handlers = []
    if os.path.exists(SYSLOG_SOCKET):
        handlers.append(logging.handlers.SysLogHandler(SYSLOG_SOCKET))
    if local or not handlers:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(logging.Formatter(
            program + ': [%(levelname)s] %(message)s'
        ))
        logging.getLogger('').addHandler(handler)
    logging.getLogger('').setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('aiohttp.client').setLevel(logging.WARNING)
