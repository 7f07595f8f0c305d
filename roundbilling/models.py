from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _alias(snake: str, camel: str, *extra: str) -> AliasChoices:
    # Producers send snake_case, camelCase or PascalCase keys.
    return AliasChoices(snake, camel, camel[:1].upper() + camel[1:], *extra)


def _normalize(value: str) -> str:
    # "calc_round_fee", "CalcRoundFee" and "calc-round-fee" are the same value
    return value.strip().replace("_", "").replace("-", "").lower()


def _blank_if_null(value: Any) -> Any:
    # producers serialize absent strings as explicit nulls
    return "" if value is None else value


class _ClosedEnum(str, Enum):
    @classmethod
    def _fallback(cls):
        raise NotImplementedError

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            wanted = _normalize(value)
            for member in cls:
                if _normalize(member.value) == wanted:
                    return member
        return cls._fallback()


class TaskType(_ClosedEnum):
    CALC_ROUND_FEE = "calc_round_fee"
    OTHER = "other"

    @classmethod
    def _fallback(cls):
        return cls.OTHER


class OriginalSource(_ClosedEnum):
    ADMIN_PANEL = "admin_panel"
    MOBILE_APP = "mobile_app"
    WEB_APP = "web_app"
    OTHER = "other"

    @classmethod
    def _fallback(cls):
        return cls.OTHER


class EntryKind(_ClosedEnum):
    DEBIT = "debit"
    CREDIT = "credit"
    UNKNOWN = "unknown"

    @classmethod
    def _fallback(cls):
        return cls.UNKNOWN


class FeeKind(_ClosedEnum):
    COST_18_HOLES = "cost_18Holes"
    COST_9_HOLES = "cost_9Holes"
    OTHER = "other"

    @classmethod
    def _fallback(cls):
        return cls.OTHER


def is_well_formed_uuid(value: str) -> bool:
    try:
        UUID(value.strip())
    except (ValueError, AttributeError):
        return False
    return True


# ---------------------------------------------------------------------------
# Inbound event
# ---------------------------------------------------------------------------

class Round(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(default="", validation_alias=_alias("id", "id"))
    transaction_id: Optional[str] = Field(default=None, validation_alias=_alias("transaction_id", "transactionId"))
    entity_id: str = Field(default="", validation_alias=_alias("entity_id", "entityId"))
    hole_scores: Optional[List[Any]] = Field(default=None, validation_alias=_alias("hole_scores", "holeScores"))
    original_source: str = Field(default="", validation_alias=_alias("original_source", "originalSource"))
    third_party_round_id: Optional[str] = Field(
        default=None,
        validation_alias=_alias("third_party_round_id", "thirdPartyRoundId", "thirdPartyScorecardId", "ThirdPartyScorecardId"),
    )

    blank_nulls = field_validator("id", "entity_id", "original_source", mode="before")(_blank_if_null)

    @property
    def hole_count(self) -> int:
        return len(self.hole_scores or [])

    @property
    def source_kind(self) -> OriginalSource:
        return OriginalSource(self.original_source or "")

    @property
    def has_transaction_id(self) -> bool:
        return bool(self.transaction_id)


class RoundEvent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    task_type: str = Field(default="", validation_alias=_alias("task_type", "taskType"))
    token_cost: int = Field(default=0, validation_alias=_alias("token_cost", "tokenCost"))
    entity_id: str = Field(default="", validation_alias=_alias("entity_id", "entityId"))
    golfer_id: str = Field(default="", validation_alias=_alias("golfer_id", "golferId"))
    golfer_email: str = Field(default="", validation_alias=_alias("golfer_email", "golferEmail"))
    golfer_first_name: str = Field(default="", validation_alias=_alias("golfer_first_name", "golferFirstName"))
    golfer_last_name: str = Field(default="", validation_alias=_alias("golfer_last_name", "golferLastName"))
    round: Optional[Round] = Field(default=None, validation_alias=_alias("round", "round"))

    blank_nulls = field_validator(
        "task_type", "entity_id", "golfer_id", "golfer_email", "golfer_first_name", "golfer_last_name", mode="before"
    )(_blank_if_null)

    @field_validator("token_cost", mode="before")
    @classmethod
    def null_cost_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @property
    def task_kind(self) -> TaskType:
        return TaskType(self.task_type or "")


# ---------------------------------------------------------------------------
# Ledger documents
# ---------------------------------------------------------------------------

ENTRY_DOC_TYPE = "transaction"
FEE_DOC_TYPE = "fee"


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


class LedgerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    golfer_id: str
    entity_id: str
    # None when the stored entry carries no balance
    available_tokens: Optional[int]
    transaction_value: int
    kind: EntryKind
    created_at: int
    third_party_round_id: Optional[str] = None
    round_id: Optional[str] = None
    original_source: str = ""
    golfer_email: str = ""
    golfer_first_name: str = ""
    golfer_last_name: str = ""
    transaction_name: str = ""
    short_description: str = ""
    notes: str = ""

    def to_item(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "id": self.id,
            "type": ENTRY_DOC_TYPE,
            "golfer_id": self.golfer_id,
            "entity_id": self.entity_id,
            "transaction_value": int(self.transaction_value),
            "transaction_type": {
                "name": self.transaction_name,
                "short_description": self.short_description,
                "debit_or_credit": self.kind.value,
            },
            "created_at": int(self.created_at),
            "original_source": self.original_source,
            "golfer_email": self.golfer_email,
            "golfer_first_name": self.golfer_first_name,
            "golfer_last_name": self.golfer_last_name,
            "transaction_notes": self.notes,
        }
        if self.available_tokens is not None:
            item["available_tokens"] = int(self.available_tokens)
        for key in ("third_party_round_id", "round_id"):
            value = getattr(self, key)
            if value is not None:
                item[key] = value
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "LedgerEntry":
        txn_type = item.get("transaction_type") or {}
        return cls(
            id=item["id"],
            golfer_id=item.get("golfer_id", ""),
            entity_id=item.get("entity_id", ""),
            available_tokens=_optional_int(item.get("available_tokens")),
            transaction_value=int(item.get("transaction_value") or 0),
            kind=EntryKind(txn_type.get("debit_or_credit") or ""),
            created_at=int(item.get("created_at") or 0),
            third_party_round_id=item.get("third_party_round_id"),
            round_id=item.get("round_id"),
            original_source=item.get("original_source", ""),
            golfer_email=item.get("golfer_email", ""),
            golfer_first_name=item.get("golfer_first_name", ""),
            golfer_last_name=item.get("golfer_last_name", ""),
            transaction_name=txn_type.get("name", ""),
            short_description=txn_type.get("short_description", ""),
            notes=item.get("transaction_notes", ""),
        )


class FeeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    item: str
    cost: int

    @property
    def kind(self) -> FeeKind:
        return FeeKind(self.item)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "FeeRecord":
        """
        Build a fee record from a stored item.

        Raises pydantic.ValidationError when ``cost`` is missing, null or not a
        whole number; a fee is never defaulted or truncated.
        """
        return cls(entity_id=item.get("entity_id", ""), item=item.get("item", ""), cost=item.get("cost"))


# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------

class RoundEventResp(BaseModel):
    outcome: str
    anomaly: Optional[str] = None
    cost: Optional[int] = None
    entry_id: Optional[str] = None
    available_tokens: Optional[int] = None
