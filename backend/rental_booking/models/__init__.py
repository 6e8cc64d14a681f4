from rental_booking.models.admin import AdminUser, AuditLog, ContractVersion
from rental_booking.models.booking import Booking, Customer
from rental_booking.models.delivery import DeliverySlot, SlotHold
from rental_booking.models.payment import PaymentEvent, PaymentRecord

__all__ = [
    "AdminUser", "AuditLog", "ContractVersion",
    "Booking", "Customer",
    "DeliverySlot", "SlotHold",
    "PaymentEvent", "PaymentRecord",
]
