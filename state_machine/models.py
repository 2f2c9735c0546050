"""Core domain models for invoices, plans and merchandise."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InvoiceStatus(str, Enum):
    """Settlement states reported by the invoice issuer."""

    UNPAID = "UNPAID"
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class Money(BaseModel):
    """Decimal amount plus ISO currency code."""

    amount: Decimal = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()

    def to_dict(self) -> dict[str, str]:
        return {"amount": str(self.amount), "currency": self.currency}


class Invoice(BaseModel):
    """
    A pending payment request as seen through the status source.

    ``state`` is kept as a plain string: the issuer may report values that
    are not members of ``InvoiceStatus`` and the poller must still see them.
    """

    invoice_id: str = Field(..., min_length=1, alias="invoiceId")
    amount: Money
    state: str = Field(default=InvoiceStatus.UNPAID.value)
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow, alias="created")
    correlation_id: Optional[str] = Field(None, alias="correlationId")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("invoice_id")
    @classmethod
    def validate_invoice_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("invoice_id must not be blank")
        return v.strip()

    @property
    def status(self) -> Optional[InvoiceStatus]:
        """Known status, or None for a state outside the enumeration."""
        try:
            return InvoiceStatus(self.state)
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self.state in (InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Invoice":
        """Build from a Strike invoice payload."""
        return cls.model_validate(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoiceId": self.invoice_id,
            "amount": self.amount.to_dict(),
            "state": self.state,
            "description": self.description,
            "created": self.created_at.isoformat(),
            "correlationId": self.correlation_id,
        }


class PlanInterval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionPlan(BaseModel):
    """A purchasable subscription tier."""

    id: str
    name: str
    description: str
    price: Decimal
    currency: str = "usd"
    interval: PlanInterval = PlanInterval.MONTHLY
    features: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class MerchCategory(str, Enum):
    APPAREL = "apparel"
    ACCESSORIES = "accessories"
    COLLECTIBLES = "collectibles"
    DIGITAL = "digital"


class MerchItem(BaseModel):
    """A merchandise catalogue entry."""

    id: str
    name: str
    description: str
    price: Decimal
    currency: str = "usd"
    category: MerchCategory
    image_url: str
    in_stock: bool = True
    variants: dict[str, list[str]] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class CartLine(BaseModel):
    """One line of a merchandise order."""

    item_id: str = Field(..., alias="itemId", min_length=1)
    quantity: int = Field(..., ge=1)
    variant: Optional[dict[str, str]] = None

    model_config = ConfigDict(populate_by_name=True)


class Quote(BaseModel):
    """A Lightning quote for a merchandise order."""

    quote_id: str = Field(..., alias="quoteId")
    description: str = ""
    ln_invoice: str = Field("", alias="lnInvoice")
    onchain_address: Optional[str] = Field(None, alias="onchainAddress")
    amount: Money
    expiration: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "quoteId": self.quote_id,
            "description": self.description,
            "lnInvoice": self.ln_invoice,
            "onchainAddress": self.onchain_address,
            "amount": self.amount.to_dict(),
            "expiration": self.expiration.isoformat() if self.expiration else None,
        }
