from typing import Iterable


class UpstreamFetchError(RuntimeError):
    """A Store read failed; the whole computation is abandoned."""


class ValidationError(ValueError):
    def __init__(self, message: str, fields: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.fields = list(fields)


class ConfigurationError(ValueError):
    """Stored data the balance math cannot interpret (unknown pattern or type)."""


class NotFoundError(LookupError):
    pass
