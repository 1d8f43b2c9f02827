from app.models.mentorship import (
    Mentor,
    MentorSession,
    MentorshipProduct,
    Order,
    Payment,
    SeatReservation,
    SessionPack,
)

__all__ = [
    "Mentor",
    "MentorSession",
    "MentorshipProduct",
    "Order",
    "Payment",
    "SeatReservation",
    "SessionPack",
]
