"""Error types raised inside the intake pipeline."""

from __future__ import annotations


class IntakeError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class DocumentConversionError(IntakeError):
    """An uploaded file could not be turned into an extraction payload."""


class ExtractionContractViolation(IntakeError):
    """The extraction response held no usable JSON object."""

    def __init__(self, message: str, content: str = ""):
        super().__init__(message)
        self.content = content


class PriceSourceUnavailable(IntakeError):
    """The price catalog could not be fetched and nothing usable is cached."""


class AuthorizationDenied(IntakeError):
    def __init__(self, identity: object):
        super().__init__("⛔ Нет доступа. Только для администраторов.")
        self.identity = identity


class NotFound(IntakeError):
    def __init__(self, kind: str, ident: object):
        super().__init__(f"❌ {kind} #{ident} не найден.")
        self.kind = kind
        self.ident = ident


class RemoteFetchError(IntakeError):
    """A shared link could not be listed or downloaded."""
