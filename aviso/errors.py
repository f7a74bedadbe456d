from __future__ import annotations


class AvisoError(Exception):
    code = "internal_error"


class FetchError(AvisoError):
    code = "fetch_error"

    def __init__(self, source_id: str, cause: str):
        super().__init__(f"{source_id}: {cause}")
        self.source_id = source_id
        self.cause = cause


class ParseError(AvisoError):
    code = "parse_error"

    def __init__(self, source_id: str, reason: str):
        super().__init__(f"{source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class ClusterConflictError(AvisoError):
    code = "cluster_conflict"


class NotFoundError(AvisoError):
    code = "not_found"


class ValidationError(AvisoError):
    code = "validation_error"
