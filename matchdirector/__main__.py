# SPDX-License-Identifier: GPL-2.0-or-later

import asyncio
import logging
import optparse
import signal
import sys

import matchdirector.backend
import matchdirector.config
import matchdirector.log
from matchdirector.backoff import Backoff
from matchdirector.director import Director, StaticAssigner
from matchdirector.models import FunctionConfig, MatchProfile
from matchdirector.monitoring import monitoring_start


def make_director(config, backend):
    """Builds a director from the ``director`` configuration profile."""
    cfg = config['director']
    return Director(
        backend,
        MatchProfile.from_dict(cfg['profile']),
        FunctionConfig.from_dict(cfg['function']),
        StaticAssigner(cfg['connection']),
        backoff=Backoff.from_config(config.get('retry')),
    )


async def run(config):
    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, task.cancel)
    async with matchdirector.backend.connect() as backend:
        director = make_director(config, backend)
        try:
            await director.run(config['director']['tick_rate_secs'])
        except asyncio.CancelledError:
            pass


if __name__ == '__main__':
    # Argument parsing
    parser = optparse.OptionParser()
    parser.add_option(
        '-l',
        '--local-logging',
        action='store_true',
        dest='local_logging',
        default=False,
        help='Activate logging to stdout.',
    )
    parser.add_option(
        '-v',
        '--verbose',
        action='store_true',
        dest='verbose',
        default=False,
        help='Verbose mode.',
    )
    options, args = parser.parse_args()

    # Config
    config = matchdirector.config.load('director')

    # Logging
    matchdirector.log.setup_logging(
        'director', verbose=options.verbose, local=options.local_logging
    )

    # Monitoring
    monitoring_start(config.get('monitoring', {}).get('port', 9060))

    try:
        asyncio.run(run(config))
    except Exception:
        logging.exception('director stopped on a fatal error')
        sys.exit(1)
