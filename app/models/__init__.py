from app.models.ledger import CreditLedgerEntry, CreditTransaction
from app.models.payouts import PayoutReport, TutorWithdrawal
from app.models.people import Admin, Principal, Student, Superadmin, Tutor
from app.models.schedule import Schedule
from app.models.vouchers import VoucherRequest

__all__ = [
    "Admin",
    "CreditLedgerEntry",
    "CreditTransaction",
    "PayoutReport",
    "Principal",
    "Schedule",
    "Student",
    "Superadmin",
    "Tutor",
    "TutorWithdrawal",
    "VoucherRequest",
]
