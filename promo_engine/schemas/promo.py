from pydantic import BaseModel, Field, ConfigDict, AliasChoices, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Annotated, List, Dict, Any, Optional, Tuple, Union, Literal
from datetime import date, datetime


# Persisted documents use camelCase keys; Python code uses snake_case
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Variants of a promo code. The stored document flattens these behind the
# isReferral / isSalonReferral flags; in memory they are a tagged union.
class StandardVariant(CamelModel):
    kind: Literal["standard"] = "standard"


class ReferralVariant(CamelModel):
    kind: Literal["referral"] = "referral"
    referrer_email: Optional[str] = None
    referrer_reward_available: bool = False
    friend_uses_remaining: int = 0


class SalonReferralVariant(CamelModel):
    kind: Literal["salon_referral"] = "salon_referral"
    salon_name: Optional[str] = None
    salon_email: Optional[str] = None
    salon_usage_limit: Optional[int] = None
    salon_used_count: int = 0
    commission_total: float = 0
    commission_paid: float = 0
    client_discount_percent: float = 0


Variant = Annotated[
    Union[StandardVariant, ReferralVariant, SalonReferralVariant],
    Field(discriminator="kind"),
]

REFERRAL_KEYS = ("referrerEmail", "referrerRewardAvailable", "friendUsesRemaining")
SALON_KEYS = (
    "salonName", "salonEmail", "salonUsageLimit", "salonUsedCount",
    "commissionTotal", "commissionPaid", "clientDiscountPercent",
)
# Never echoed back to a checkout client
PRIVATE_KEYS = ("usedByEmails", "referrerEmail", "salonEmail")
# Written back exactly as stored; the engine only reads them
VERBATIM_KEYS = ("validFrom", "validUntil")
# Prices beyond this are rejected as input errors
MAX_PRICE = 1e12


def _defaults(model_cls) -> Dict[str, Any]:
    return {
        field.alias or name: field.get_default(call_default_factory=True)
        for name, field in model_cls.model_fields.items()
        if not field.is_required()
    }


class PromoCode(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    code: str
    discount_type: Literal["percentage", "fixed"] = "percentage"
    discount_value: float = 0
    min_purchase: Optional[float] = None
    max_discount: Optional[float] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    usage_limit: Optional[int] = None
    used_count: int = 0
    active: bool = True
    used_by_emails: List[str] = Field(default_factory=list)
    auto_generated: bool = False
    description: Optional[str] = None
    variant: Variant = Field(default_factory=StandardVariant)

    @model_validator(mode="before")
    @classmethod
    def _variant_from_flags(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "variant" in data:
            return data

        data = dict(data)
        is_referral = data.pop("isReferral", False) is True
        is_salon_referral = data.pop("isSalonReferral", False) is True
        if is_referral and is_salon_referral:
            raise ValueError("a promo code cannot be both a referral and a salon referral code")

        if is_referral:
            variant = {"kind": "referral"}
            keys = REFERRAL_KEYS
        elif is_salon_referral:
            variant = {"kind": "salon_referral"}
            keys = SALON_KEYS
        else:
            return data

        for key in keys:
            if key in data:
                value = data.pop(key)
                if value is not None:
                    variant[key] = value
        data["variant"] = variant
        return data

    @field_validator("valid_from", "valid_until", mode="before")
    @classmethod
    def _date_only(cls, value: Any) -> Any:
        # Stored values may be full ISO timestamps; the window is day-granular
        if isinstance(value, str):
            value = value.strip()
            return value[:10] if value else None
        if isinstance(value, datetime):
            return value.date()
        return value

    @field_validator("used_count", mode="before")
    @classmethod
    def _null_count(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("used_by_emails", mode="before")
    @classmethod
    def _null_emails(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def kind(self) -> str:
        return self.variant.kind

    @property
    def is_referral(self) -> bool:
        return isinstance(self.variant, ReferralVariant)

    @property
    def is_salon_referral(self) -> bool:
        return isinstance(self.variant, SalonReferralVariant)

    @property
    def is_welcome_discount(self) -> bool:
        if self.kind != "standard" or not self.auto_generated:
            return False
        description = (self.description or "").lower()
        return "welcome discount" in description or "newsletter subscribers" in description

    def to_document(self, stored: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Persisted shape. Given the ``stored`` entry, keys it never had stay out
        unless they moved off their default, and verbatim keys keep their stored text."""
        doc = self.model_dump(by_alias=True, exclude={"variant"}, mode="json")
        doc.update(self.variant.model_dump(by_alias=True, exclude={"kind"}, mode="json"))
        doc["isReferral"] = self.is_referral
        doc["isSalonReferral"] = self.is_salon_referral
        if stored is None:
            return doc

        defaults = {**_defaults(PromoCode), **_defaults(type(self.variant))}
        doc = {
            key: value for key, value in doc.items()
            if key in stored or key not in defaults or value != defaults[key]
        }
        for key in VERBATIM_KEYS:
            if key in stored:
                doc[key] = stored[key]
        return doc

    def to_public(self) -> Dict[str, Any]:
        doc = self.to_document()
        for key in PRIVATE_KEYS:
            doc.pop(key, None)
        return doc


class PromoCatalog(CamelModel):
    """The ``promo-codes`` document. Entries stay raw so unrelated codes round-trip untouched."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    promo_codes: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("promo_codes", mode="before")
    @classmethod
    def _list_only(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, dict)]

    def find(self, code: str) -> Optional[Tuple[int, Dict[str, Any]]]:
        needle = code.strip().lower()
        for index, entry in enumerate(self.promo_codes):
            if str(entry.get("code") or "").strip().lower() == needle:
                return index, entry
        return None

    def with_promo(self, index: int, promo: PromoCode) -> "PromoCatalog":
        entries = list(self.promo_codes)
        entries[index] = promo.to_document(stored=entries[index])
        return self.model_copy(update={"promo_codes": entries})

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class CommissionSettings(CamelModel):
    early_percentage: float = Field(default=0, ge=0)
    final_percentage: float = Field(default=0, ge=0)

    @property
    def total_percentage(self) -> float:
        return self.early_percentage + self.final_percentage


class CommissionRecord(CamelModel):
    id: str
    promo_code: str
    salon_name: Optional[str] = None
    salon_email: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    service: Optional[str] = None
    booking_id: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    original_price: float = 0
    final_price: float = 0
    discount_applied: float = 0
    client_discount_percent: float = 0
    commission_percent: float = 0
    commission_total_amount: int = 0
    commission_early_percent: float = 0
    commission_final_percent: float = 0
    commission_early_amount: int = 0
    commission_final_amount: int = 0
    commission_early_status: Literal["pending", "paid"] = "pending"
    commission_final_status: Literal["pending", "paid"] = "pending"
    commission_early_paid_at: Optional[datetime] = None
    commission_final_paid_at: Optional[datetime] = None
    status: str = "pending"
    created_at: datetime


class PendingNotification(BaseModel):
    recipient: str
    kind: Literal["referral_reward_ready", "salon_commission_earned"]
    variables: Dict[str, Any] = Field(default_factory=dict)


# Request schemas
class RedeemRequest(CamelModel):
    code: str = Field(..., description="Promo code as typed by the customer")
    redeemer_email: str = Field(
        ...,
        validation_alias=AliasChoices("redeemerEmail", "redeemer_email", "email"),
        description="Email of the person redeeming the code",
    )
    original_price: Optional[float] = Field(default=None, ge=0, le=MAX_PRICE, allow_inf_nan=False)
    final_price: Optional[float] = Field(default=None, ge=0, le=MAX_PRICE, allow_inf_nan=False)
    discount: Optional[float] = Field(
        default=None, ge=0, le=MAX_PRICE, allow_inf_nan=False, description="Discount the checkout already applied",
    )
    client_name: Optional[str] = None
    service: Optional[str] = None
    booking_id: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None

    @field_validator("code")
    @classmethod
    def _code_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Promo code is required")
        return value

    @field_validator("redeemer_email")
    @classmethod
    def _email_required(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("Email is required")
        return value


class QuoteRequest(CamelModel):
    code: str
    email: Optional[str] = None
    amount: Optional[float] = Field(default=None, ge=0, le=MAX_PRICE, allow_inf_nan=False)

    @field_validator("code")
    @classmethod
    def _code_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Promo code is required")
        return value

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().lower() or None


# Response schemas
class RedeemResponse(CamelModel):
    success: bool = True
    friend_redeemed: bool = False
    referrer_redeemed: bool = False
    salon_redeemed: bool = False
    salon_commission_amount: int = 0
    discount_amount: float = 0
    promo_code: Dict[str, Any]


class QuoteResponse(CamelModel):
    valid: bool = True
    code: str
    variant: str
    discount_type: str
    discount_value: float
    discount_amount: float = 0
