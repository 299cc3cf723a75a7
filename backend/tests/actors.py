"""Profile ids used across the backend tests.

Clearly fake so they cannot collide with production rows.
"""

CLIENT_ID = "00000000-0000-4000-8000-00000000c11e"
APPRENTICE_ID = "00000000-0000-4000-8000-0000000000a1"
OTHER_APPRENTICE_ID = "00000000-0000-4000-8000-0000000000a2"
OUTSIDER_ID = "00000000-0000-4000-8000-0000000000f0"
