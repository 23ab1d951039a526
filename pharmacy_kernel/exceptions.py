"""
Typed Exception Hierarchy for the Pharmacy Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Point-of-sale terminals, dashboards and the report exporter all surface
kernel failures to a user. They must be able to tell "this batch is not the
FEFO suggestion" apart from "this batch ran out" without parsing messages:

    try:
        selector.select_batch(medicine_id, batch_id, quantity=2)
    except FefoStrictViolation as e:
        show_message(f"Dispense batch {e.suggested_batch_id} first")
    except InsufficientStockError as e:
        show_message(f"Only {e.available} left in batch {e.batch_id}")

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (ids, quantities)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PharmacyKernelError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- MedicineNotFoundError
    |   +-- BatchNotFoundError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |
    +-- DispensingError
    |   +-- FefoStrictViolation
    |   +-- PendingSelectionError
    |
    +-- AuditDeliveryError
    |
    +-- SettingsError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------
Validation   | VALIDATION_ERROR            | Malformed batch / adjustment input
-------------|-----------------------------|-----------------------------------
Lookup       | MEDICINE_NOT_FOUND          | Unknown medicine id
             | BATCH_NOT_FOUND             | Unknown or unavailable batch id
-------------|-----------------------------|-----------------------------------
Stock        | INSUFFICIENT_STOCK          | Requested quantity > available
-------------|-----------------------------|-----------------------------------
Dispensing   | FEFO_STRICT_VIOLATION       | Non-suggested batch, strict mode
             | PENDING_SELECTION_INVALID   | Override token reused / cancelled
-------------|-----------------------------|-----------------------------------
Audit        | AUDIT_DELIVERY_FAILED       | Sink rejected an event (logged only)
-------------|-----------------------------|-----------------------------------
Settings     | SETTINGS_INVALID            | Settings file fails validation

All failures are synchronous and caller-visible. Nothing is retried
automatically, and a failed ledger mutation leaves quantities untouched.
"""


class PharmacyKernelError(Exception):
    """
    Base exception for all pharmacy kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "PHARMACY_KERNEL_ERROR"


# Validation


class ValidationError(PharmacyKernelError):
    """Malformed batch, sale or adjustment input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str, value: object = None):
        self.field = field
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid {field}: {reason}")


# Lookup


class NotFoundError(PharmacyKernelError):
    """Base exception for unknown medicine / batch identifiers."""

    code: str = "NOT_FOUND"


class MedicineNotFoundError(NotFoundError):
    """Medicine id is not registered in the catalog."""

    code: str = "MEDICINE_NOT_FOUND"

    def __init__(self, medicine_id: str):
        self.medicine_id = medicine_id
        super().__init__(f"Medicine not found: {medicine_id}")


class BatchNotFoundError(NotFoundError):
    """Batch id is unknown, or not available for the requested medicine."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str, medicine_id: str | None = None):
        self.batch_id = batch_id
        self.medicine_id = medicine_id
        if medicine_id is None:
            super().__init__(f"Batch not found: {batch_id}")
        else:
            super().__init__(
                f"Batch {batch_id} is not available for medicine {medicine_id}"
            )


# Stock


class StockError(PharmacyKernelError):
    """Base exception for stock-level violations."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested quantity exceeds what the batch holds."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, batch_id: str, requested: int, available: int):
        self.batch_id = batch_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock in batch {batch_id}: "
            f"requested={requested}, available={available}"
        )


# Dispensing policy


class DispensingError(PharmacyKernelError):
    """Base exception for FEFO dispensing-policy errors."""

    code: str = "DISPENSING_ERROR"


class FefoStrictViolation(DispensingError):
    """A non-suggested batch was requested while FEFO mode is strict."""

    code: str = "FEFO_STRICT_VIOLATION"

    def __init__(
        self,
        medicine_id: str,
        requested_batch_id: str,
        suggested_batch_id: str,
    ):
        self.medicine_id = medicine_id
        self.requested_batch_id = requested_batch_id
        self.suggested_batch_id = suggested_batch_id
        super().__init__(
            f"Strict FEFO: medicine {medicine_id} must be dispensed from "
            f"batch {suggested_batch_id}, not {requested_batch_id}"
        )


class PendingSelectionError(DispensingError):
    """Override token was already confirmed, cancelled, expired or never issued."""

    code: str = "PENDING_SELECTION_INVALID"

    def __init__(self, token: str, reason: str):
        self.token = token
        self.reason = reason
        super().__init__(f"Pending selection {token} is not confirmable: {reason}")


# Audit


class AuditDeliveryError(PharmacyKernelError):
    """An audit sink could not accept an event.

    Raised by sinks; the ledger catches and logs it so the committed
    mutation stands.
    """

    code: str = "AUDIT_DELIVERY_FAILED"

    def __init__(self, event_id: str, reason: str):
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"Audit event {event_id} not delivered: {reason}")


# Settings


class SettingsError(PharmacyKernelError):
    """Settings document failed validation."""

    code: str = "SETTINGS_INVALID"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid setting {key}: {reason}")
