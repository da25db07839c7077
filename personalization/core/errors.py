class PersonalizationError(Exception):
    """Base error; ``code`` mirrors the snake_case details the API layer reports."""

    code = "personalization_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class InvalidUserId(PersonalizationError):
    code = "invalid_user_id"


class StorageUnavailable(PersonalizationError):
    code = "storage_unavailable"


class InvalidTagFormat(PersonalizationError, ValueError):
    code = "invalid_tag_format"
