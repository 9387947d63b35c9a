from .events.models import Event
from .ticketing.models import TicketType
from .payments.models import Payment, PaymentStatus
from .registrations.models import Registration, RegistrationPaymentStatus

__all__ = (
    "Event", "TicketType", "Payment", "PaymentStatus", "Registration", "RegistrationPaymentStatus"
)
