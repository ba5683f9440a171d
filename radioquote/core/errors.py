"""
Exception types raised by the quote engine services.

Routers translate these into HTTP responses; services raise them and let them
propagate unless noted otherwise.
"""

from typing import Any, Optional


class StoreError(Exception):
    """Relational store failure (driver error, connection loss or timeout)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class PartNotFound(Exception):
    """Requested SKU exists in neither parts table."""

    def __init__(self, sku: str):
        super().__init__(f"Part not found: {sku}")
        self.sku = sku


class QuoteNotFound(Exception):
    """No quote row for the requested id."""

    def __init__(self, quote_id: int):
        super().__init__(f"Quote not found: {quote_id}")
        self.quote_id = quote_id


class ClientNotFound(Exception):
    """No client row for the requested id."""

    def __init__(self, client_id: int):
        super().__init__(f"Client not found: {client_id}")
        self.client_id = client_id


class LearningError(Exception):
    """A single learning family failed to update; other families continue."""

    def __init__(self, family: str, cause: Optional[BaseException] = None):
        super().__init__(f"Learning update failed for {family}: {cause}")
        self.family = family
        self.cause = cause


class QuoteRejected(Exception):
    """
    Raised inside the assembly transaction when the safety gate blocks a quote.

    Carries the ValidationResult so callers can report exactly which limits
    were breached. Raising it rolls back every write made for the quote.
    """

    def __init__(self, result: Any):
        super().__init__("Quote rejected by safety validation")
        self.result = result
