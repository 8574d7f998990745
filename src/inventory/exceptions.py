"""Exception types raised by the inventory services.

Validation problems use Django's ``ValidationError`` directly. The
subclasses below let callers tell a refused state change or a busy asset
apart from a malformed request, and the ``RecordNotFound`` family keeps
"doesn't exist" separate from "exists but unavailable".
"""

from django.core.exceptions import ObjectDoesNotExist, ValidationError


class StateError(ValidationError):
    """The action is not allowed from the record's current state."""


class AvailabilityError(ValidationError):
    """The requested equipment is not free for the requested window."""

    def __init__(self, message, unavailable_assets=None, shortage=None):
        super().__init__(message)
        self.unavailable_assets = list(unavailable_assets or [])
        self.shortage = shortage


class RecordNotFound(ObjectDoesNotExist):
    pass


class AssetNotFound(RecordNotFound):
    pass


class BookingNotFound(RecordNotFound):
    pass


class GroupNotFound(RecordNotFound):
    pass


class KitNotFound(RecordNotFound):
    pass


def error_message(exc):
    """Flatten a service exception into a single display string."""
    if isinstance(exc, ValidationError):
        return "; ".join(exc.messages)
    return str(exc)
