# SPDX-License-Identifier: GPL-2.0-or-later

from prometheus_client import start_http_server, Counter, Summary

director_ticks = Counter(
    'director_ticks',
    'Number of director ticks',
)

director_fetched_matches = Counter(
    'director_fetched_matches',
    'Number of matches fetched from the backend',
)

director_assigned_tickets = Counter(
    'director_assigned_tickets',
    'Number of tickets sent with an assignment',
)

director_assignment_failures = Counter(
    'director_assignment_failures',
    'Number of tickets the backend failed to assign',
)

director_retries = Counter(
    'director_retries',
    'Number of retried backend calls',
    ['operation'],
)

director_fatal_errors = Counter(
    'director_fatal_errors',
    'Number of errors that stopped the director',
)

director_fetch_latency_seconds = Summary(
    'director_fetch_latency_seconds',
    'Latency of the match fetch step, retries included',
)

director_assign_latency_seconds = Summary(
    'director_assign_latency_seconds',
    'Latency of the assignment step, retries included',
)


def monitoring_start(port=9060):
    start_http_server(port)
