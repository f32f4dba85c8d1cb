"""
buddyup/features/users/identity.py
Deterministic display handles for user ids.

Profiles live in the account service; inside the engine a user is only an
id, so notifications and timeline summaries use a stable short handle.
"""

import hashlib


def display_for_user(user_id: str) -> str:
    """Deterministic display handle, e.g. "@u_3f9a1c"."""
    hash_hex = hashlib.sha1(user_id.encode("utf-8")).hexdigest()
    return f"@u_{hash_hex[-6:]}"


def is_valid_user_id(user_id: str) -> bool:
    """Check if user_id is valid format"""
    return isinstance(user_id, str) and 0 < len(user_id.strip()) <= 100
