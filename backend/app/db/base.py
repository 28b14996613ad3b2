from backend.app.db.base_class import Base

# Import models to register metadata for Base.metadata.create_all in tests
from backend.app.models.user import User  # noqa: F401
from backend.app.models.class_definition import ClassDefinition  # noqa: F401
from backend.app.models.class_occurrence import ClassOccurrence  # noqa: F401
from backend.app.models.occurrence_attendee import OccurrenceAttendee  # noqa: F401
from backend.app.models.ledger_entry import LedgerEntry  # noqa: F401
from backend.app.models.ledger_discount import LedgerDiscount  # noqa: F401
from backend.app.models.ledger_adjustment import LedgerAdjustment  # noqa: F401
