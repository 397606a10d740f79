# SPDX-License-Identifier: GPL-2.0-or-later
"""Human readable renderings of records, for logs."""

import json


def dump_assignment(assignment):
    """Renders `assignment` as compact JSON with sorted keys.

    Never raises: rendering errors are reported inside the returned string.
    """
    try:
        return json.dumps(
            assignment.to_dict(),
            sort_keys=True,
            separators=(',', ':'),
            ensure_ascii=False,
        )
    except Exception as exn:
        return f'<!MARSHAL_ERROR: {exn!r}>'
