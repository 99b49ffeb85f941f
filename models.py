from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple, Union


class SplitStrategy(str, Enum):
    EQUAL = "equal"
    PERCENTAGE = "percentage"
    CUSTOM = "custom"
    NONE = "none"


class ShareStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PAID = "paid"


class PaymentStatus(str, Enum):
    CREATED = "created"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.CONFIRMED, PaymentStatus.REJECTED, PaymentStatus.CANCELLED)


ACTIVE_PAYMENT_STATUSES = (PaymentStatus.CREATED, PaymentStatus.PENDING)


class PaymentMethod(str, Enum):
    UPI = "upi"
    CASH = "cash"


class ExpenseType(str, Enum):
    PERSONAL = "personal"
    GROUP = "group"
    INSTANT = "instant"


class Category(str, Enum):
    FOOD = "Food"
    RENT = "Rent"
    UTILITIES = "Utilities"
    TRAVEL = "Travel"
    SHOPPING = "Shopping"
    ENTERTAINMENT = "Entertainment"
    HEALTH = "Health"
    EDUCATION = "Education"
    OTHER = "Other"


@dataclass
class Participant:
    id: int
    name: str
    upi_id: Optional[str] = None


@dataclass
class Group:
    id: int
    name: str
    description: str
    created_at: str


# Split inputs, one per strategy. Amounts are minor units, percentages exact Decimals.
@dataclass(frozen=True)
class EqualInput:
    participant: int


@dataclass(frozen=True)
class PercentageInput:
    participant: int
    percentage: Decimal


@dataclass(frozen=True)
class CustomInput:
    participant: int
    amount: int


SplitInput = Union[EqualInput, PercentageInput, CustomInput]


@dataclass
class Share:
    participant: int
    final_share: int
    percentage: Optional[Decimal] = None
    declared_amount: Optional[int] = None
    status: ShareStatus = ShareStatus.PENDING


@dataclass
class LedgerEntry:
    id: Optional[int]
    payer: int
    total: int
    strategy: SplitStrategy
    shares: List[Share]
    created_at: str
    description: str = ""
    group_id: Optional[int] = None
    category: Category = Category.OTHER
    notes: str = ""
    currency: str = "INR"
    expense_type: ExpenseType = ExpenseType.PERSONAL

    @property
    def participants(self) -> List[int]:
        return [s.participant for s in self.shares]

    def share_of(self, participant: int) -> Optional[Share]:
        return next((s for s in self.shares if s.participant == participant), None)


@dataclass(frozen=True)
class Transfer:
    from_participant: int
    to_participant: int
    amount: int


@dataclass(frozen=True)
class ShareKey:
    expense_id: int
    participant: int


@dataclass
class Payment:
    id: Optional[int]
    payer: int
    payee: int
    amount: int
    method: PaymentMethod
    status: PaymentStatus
    source: str
    created_at: str
    updated_at: str
    shares: List[ShareKey] = field(default_factory=list)
    transaction_ref: Optional[str] = None
    note: Optional[str] = None
    upi_intent: Optional[str] = None
    rejection_reason: Optional[str] = None
    confirmed_at: Optional[str] = None

    @property
    def related_expenses(self) -> List[int]:
        return sorted({k.expense_id for k in self.shares})


# How a new payment's amount is resolved
@dataclass(frozen=True)
class ShareRef:
    expense_id: int


@dataclass(frozen=True)
class PairNet:
    pass


@dataclass(frozen=True)
class ExplicitAmount:
    amount: int


Resolution = Union[ShareRef, PairNet, ExplicitAmount]


@dataclass(frozen=True)
class BalanceScope:
    group_id: Optional[int] = None
    participant: Optional[int] = None
    pair: Optional[Tuple[int, int]] = None


@dataclass(frozen=True)
class PaymentEvent:
    type: str
    recipient: int
    sender: int
    message: str
    payment_id: Optional[int] = None
    expense_id: Optional[int] = None
    amount: Optional[int] = None
