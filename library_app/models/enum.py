# library_app/models/enum.py
from enum import Enum

class LoanStatus(str, Enum):
    BORROWED = "borrowed"   # initial state
    OVERDUE = "overdue"     # flipped lazily on access
    RETURNED = "returned"   # terminal
    LOST = "lost"           # terminal

OPEN_STATUSES = (LoanStatus.BORROWED, LoanStatus.OVERDUE)
TERMINAL_STATUSES = (LoanStatus.RETURNED, LoanStatus.LOST)

class BookCondition(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    DAMAGED = "damaged"     # return only
    LOST = "lost"           # return only

CHECKOUT_CONDITIONS = (BookCondition.EXCELLENT, BookCondition.GOOD, BookCondition.FAIR, BookCondition.POOR)

class FineReason(str, Enum):
    LATE = "late"
    DAMAGED = "damaged"
    LOST = "lost"
    OTHER = "other"

class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    WAIVED = "waived"

class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"
    WAIVED = "waived"

class MembershipType(str, Enum):
    REGULAR = "regular"
    PREMIUM = "premium"
    STUDENT = "student"
    STAFF = "staff"
