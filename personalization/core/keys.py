import re

from personalization.core.errors import InvalidUserId

_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@\-]{0,127}$")


def validate_user_id(user_id: str) -> str:
    if not isinstance(user_id, str):
        raise InvalidUserId("user_id_not_string")
    uid = user_id.strip()
    if not uid or not _USER_ID_RE.match(uid):
        raise InvalidUserId(f"invalid_user_id:{user_id!r}")
    return uid


class KeySpace:
    """Builds store keys; every key is scoped to one user."""

    def __init__(self, prefix: str = "pz") -> None:
        self.prefix = prefix

    def user(self, kind: str, user_id: str, *parts: str) -> str:
        return ":".join([self.prefix, kind, user_id, *parts])

    def pattern(self, kind: str, *parts: str) -> str:
        return ":".join([self.prefix, kind, "*", *parts])

    def user_from_key(self, key: str) -> str:
        # prefix:kind:user:...
        return key.split(":")[2]
