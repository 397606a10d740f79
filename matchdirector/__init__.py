# SPDX-License-Identifier: GPL-2.0-or-later
"""Director: periodically fetches matches from a matchmaking backend and
sends back the assignments computed by a pluggable assigner.
"""
