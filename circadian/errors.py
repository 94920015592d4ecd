"""
Query Error Kinds
Every error carries a domain tag, a numeric code and a readable message.
"""

ERROR_DOMAIN = "HMErrorDomain"

NOT_IMPLEMENTED_CODE = 1048576


class QueryError(Exception):
    """Base class for errors raised by the query engine"""

    code: int = 0

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.domain = ERROR_DOMAIN

    def to_dict(self) -> dict:
        return {"domain": self.domain, "code": self.code, "detail": self.message}


class SourceFetchError(QueryError):
    """The sample store failed or refused a fetch"""

    code = 1


class UnsupportedTypeError(QueryError):
    """The sample type has no known aggregation policy"""

    code = NOT_IMPLEMENTED_CODE

    def __init__(self, type_tag: str, message: str = "Not implemented"):
        super().__init__(f"{message}: {type_tag}")
        self.type_tag = type_tag


class CrossTypeAggregationSkipped(QueryError):
    """A sample of another type was offered to an accumulator. Logged, not raised."""

    code = 2

    def __init__(self, expected: str, got: str):
        super().__init__(f"Skipping {got} sample while aggregating {expected}")
        self.expected = expected
        self.got = got
