"""
Client-held ledger state.

These models are the contract between devices and the sync service: one
``AppState`` per workspace, synchronized as a whole. Keys are camelCase on
the wire and snake_case in Python. Unknown keys are preserved so a newer
client never loses fields by syncing through an older server.

Soft delete is a single nullable ``deleted_at`` timestamp. Older clients
send ``deleted: true``; that flag is collapsed into ``deleted_at`` on input
and never written back out.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .dates import to_calendar_date, to_month_start

DEFAULT_SCHEMA_VERSION = 1

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO timestamp for ordering.

    Missing or unparseable values compare as the epoch, so any timestamped
    item wins over an untimestamped one. Naive values are taken as UTC.
    """
    if not value or not isinstance(value, str):
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = date_parser.isoparse(value)
        except (ValueError, OverflowError):
            return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# === Enums ===


class Direction(str, Enum):
    IN = "in"
    OUT = "out"


class TransactionKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    DEBT_PAYMENT = "debt_payment"
    FEE_INTEREST = "fee_interest"


class PaymentMethod(str, Enum):
    PIX = "pix"
    DEBIT = "debit"
    CASH = "cash"
    CREDIT = "credit"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    FINISHED = "finished"
    CANCELLED = "cancelled"


# === Models ===


class LedgerModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        use_enum_values=True,
        validate_default=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SyncedEntity(LedgerModel):
    """An item in one of the id-keyed collections."""

    id: str = Field(min_length=1)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _collapse_deleted_flag(cls, data: Any) -> Any:
        """Fold the legacy ``deleted`` flag into ``deletedAt``.

        With no timestamp to borrow the marker is the epoch, so validating
        the same payload twice gives the same item.
        """
        if not isinstance(data, dict) or "deleted" not in data:
            return data
        data = dict(data)
        flag = data.pop("deleted")
        if flag and not (data.get("deletedAt") or data.get("deleted_at")):
            data["deletedAt"] = (
                data.get("updatedAt")
                or data.get("updated_at")
                or data.get("createdAt")
                or data.get("created_at")
                or _EPOCH.isoformat()
            )
        return data

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class InstallmentInfo(LedgerModel):
    """Position of one transaction inside an installment plan."""

    group_id: str = Field(min_length=1)
    number: int = Field(ge=1)
    total: int = Field(ge=1)
    original_total_amount: Optional[float] = Field(default=None, ge=0)
    per_installment_amount: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[str] = None

    @model_validator(mode="after")
    def _number_within_total(self) -> "InstallmentInfo":
        if self.number > self.total:
            raise ValueError(f"installment number {self.number} exceeds total {self.total}")
        return self


class Transaction(SyncedEntity):
    date: str
    competence_month: Optional[str] = None
    direction: Optional[Direction] = None
    kind: TransactionKind
    amount: float = Field(ge=0)
    description: str = ""
    person_id: Optional[str] = None
    category_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    card_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    installment: Optional[InstallmentInfo] = None
    is_recurring: Optional[bool] = None
    # Client-side dirty flag; never persisted or echoed back.
    needs_sync: bool = Field(default=False, exclude=True)

    @field_validator("date")
    @classmethod
    def _date_parses(cls, value: str) -> str:
        if to_calendar_date(value) is None:
            raise ValueError(f"invalid date: {value!r}")
        return value

    @field_validator("competence_month")
    @classmethod
    def _competence_month_parses(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and to_month_start(value) is None:
            raise ValueError(f"invalid competence month: {value!r}")
        return value

    @model_validator(mode="after")
    def _credit_requires_card(self) -> "Transaction":
        if self.payment_method == PaymentMethod.CREDIT.value and not self.card_id:
            raise ValueError("cardId is required when paymentMethod is credit")
        return self


class Card(SyncedEntity):
    name: str
    closing_day: Optional[int] = Field(default=None, ge=1, le=31)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    apr_monthly: Optional[float] = None
    limit: Optional[float] = None
    balance: Optional[float] = None


class InstallmentPlan(SyncedEntity):
    description: str = ""
    category_id: Optional[str] = None
    card_id: Optional[str] = None
    purchase_date: Optional[str] = None
    first_installment_date: Optional[str] = None
    total_installments: int = Field(gt=0)
    total_amount: float = Field(ge=0)
    per_installment_amount: float = Field(ge=0)
    status: PlanStatus = PlanStatus.ACTIVE
    remaining_installments: Optional[int] = Field(default=None, ge=0)


class AppState(LedgerModel):
    """The whole client ledger for one workspace."""

    schema_version: int = Field(default=DEFAULT_SCHEMA_VERSION, ge=1)
    monthly_income: float = 0
    variable_cap: float = 0
    categories: List[str] = Field(default_factory=list)
    transactions: List[Transaction] = Field(default_factory=list)
    cards: List[Card] = Field(default_factory=list)
    installment_plans: List[InstallmentPlan] = Field(default_factory=list)
    updated_at: Optional[str] = None

    @field_validator("categories")
    @classmethod
    def _ordered_category_set(cls, value: List[str]) -> List[str]:
        return sorted({name for name in value if name})

    @model_validator(mode="after")
    def _unique_ids(self) -> "AppState":
        for collection in ("transactions", "cards", "installment_plans"):
            seen = set()
            for item in getattr(self, collection):
                if item.id in seen:
                    raise ValueError(f"duplicate id {item.id!r} in {collection}")
                seen.add(item.id)
        return self

    def counts(self) -> dict[str, int]:
        return {
            "transactions": len(self.transactions),
            "cards": len(self.cards),
            "installmentPlans": len(self.installment_plans),
            "categories": len(self.categories),
        }
