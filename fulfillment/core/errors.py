"""
Error taxonomy for fulfillment operations.

Every service raises one of these; the API layer maps ``status_code`` and
``kind`` onto the HTTP response, so messages must name the failing
precondition.
"""
from typing import List, Optional


class FulfillmentError(Exception):
    """Base class for expected, caller-visible failures."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.kind}


class ValidationFailedError(FulfillmentError):
    """Malformed or missing input."""

    kind = "validation"
    status_code = 422


class QuantityMismatchError(ValidationFailedError):
    kind = "quantity_mismatch"
    status_code = 400

    def __init__(self, sku: str, expected: int, actual: int):
        super().__init__(
            f"Quantity mismatch for SKU {sku}: order has {expected}, scanned {actual}."
        )
        self.sku = sku
        self.expected = expected
        self.actual = actual


class DuplicateBoxIdError(ValidationFailedError):
    kind = "duplicate_box_id"
    status_code = 400

    def __init__(self, box_id: int):
        super().__init__(f"Duplicate box ID {box_id} in the request.")
        self.box_id = box_id


class ConflictError(FulfillmentError):
    """A uniqueness rule was violated or a concurrent write won the race."""

    kind = "conflict"
    status_code = 409


class CrossLaneConflictError(ConflictError):
    kind = "cross_lane_conflict"

    def __init__(self, tracking_number: str, other_lane: str):
        super().__init__(
            f"Tracking number {tracking_number} already exists in QC {other_lane.title()} records."
        )
        self.tracking_number = tracking_number
        self.other_lane = other_lane


class NotFoundError(FulfillmentError):
    kind = "not_found"
    status_code = 404


class BoxNotFoundError(NotFoundError):
    kind = "box_not_found"

    def __init__(self, box_id: int):
        super().__init__(f"Box with ID {box_id} does not exist.")
        self.box_id = box_id


class InvalidStateError(FulfillmentError):
    """The operation is not legal from the record's current status."""

    kind = "invalid_state"
    status_code = 409


class IncompleteError(FulfillmentError):
    """A gating precondition is not met yet."""

    kind = "incomplete"
    status_code = 409


class ValidationIncompleteError(IncompleteError):
    kind = "validation_incomplete"

    def __init__(self, tracking_number: str, pending_skus: List[str]):
        super().__init__(
            f"Order {tracking_number} still has unvalidated products: {', '.join(pending_skus)}."
        )
        self.tracking_number = tracking_number
        self.pending_skus = pending_skus


class ExternalLookupError(FulfillmentError):
    kind = "external_lookup_failure"
    status_code = 422


class NoExpeditionFoundError(ExternalLookupError):
    kind = "no_expedition_found"

    def __init__(self, tracking_number: str, detail: Optional[str] = None):
        super().__init__(
            detail or f"No expedition found for the prefix of tracking number {tracking_number}."
        )
        self.tracking_number = tracking_number
