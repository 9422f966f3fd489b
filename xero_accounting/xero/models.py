"""Pydantic models for Xero Accounting API payloads.

Xero uses PascalCase JSON field names; models expose snake_case attributes
and accept either form. Unknown fields are kept so nothing the API returns
is lost when a model is dumped back to JSON.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal

InvoiceType = Literal["ACCREC", "ACCPAY"]
Timeframe = Literal["MONTH", "QUARTER", "YEAR"]


class XeroModel(BaseModel):
    """Base for Xero entities."""

    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        extra="allow",
    )

    def to_api(self) -> dict[str, Any]:
        """Dump using Xero field names, omitting unset fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ==================== Auth / connections ====================


class TokenResponse(BaseModel):
    """OAuth token endpoint response."""

    access_token: Optional[str] = None
    expires_in: int = 1800
    token_type: Optional[str] = None
    scope: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class XeroConnection(BaseModel):
    """A connected organisation (tenant)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[str] = None
    auth_event_id: Optional[str] = Field(default=None, alias="authEventId")
    tenant_id: str = Field(alias="tenantId")
    tenant_type: Optional[str] = Field(default=None, alias="tenantType")
    tenant_name: Optional[str] = Field(default=None, alias="tenantName")
    created_date_utc: Optional[str] = Field(default=None, alias="createdDateUtc")
    updated_date_utc: Optional[str] = Field(default=None, alias="updatedDateUtc")

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ==================== Contacts ====================


class Phone(XeroModel):
    phone_type: Optional[str] = None
    phone_number: Optional[str] = None
    phone_area_code: Optional[str] = None
    phone_country_code: Optional[str] = None


class Address(XeroModel):
    address_type: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class Contact(XeroModel):
    contact_id: Optional[str] = Field(default=None, alias="ContactID")
    contact_number: Optional[str] = None
    account_number: Optional[str] = None
    contact_status: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email_address: Optional[str] = None
    tax_number: Optional[str] = None
    addresses: Optional[list[Address]] = None
    phones: Optional[list[Phone]] = None
    is_supplier: Optional[bool] = None
    is_customer: Optional[bool] = None
    default_currency: Optional[str] = None
    updated_date_utc: Optional[str] = Field(default=None, alias="UpdatedDateUTC")


class ContactGroup(XeroModel):
    contact_group_id: Optional[str] = Field(default=None, alias="ContactGroupID")
    name: Optional[str] = None
    status: Optional[str] = None


class ContactRef(XeroModel):
    contact_id: Optional[str] = Field(default=None, alias="ContactID")
    name: Optional[str] = None


# ==================== Invoices ====================


class LineItem(XeroModel):
    line_item_id: Optional[str] = Field(default=None, alias="LineItemID")
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_amount: Optional[float] = None
    item_code: Optional[str] = None
    account_code: Optional[str] = None
    tax_type: Optional[str] = None
    tax_amount: Optional[float] = None
    line_amount: Optional[float] = None


class LineItemInput(BaseModel):
    """A line item supplied when creating an invoice."""

    description: str = "Invoice item"
    quantity: float = Field(default=1, gt=0)
    unit_amount: float = Field(ge=0)
    account_code: Optional[str] = None


class Invoice(XeroModel):
    invoice_id: Optional[str] = Field(default=None, alias="InvoiceID")
    invoice_number: Optional[str] = None
    type: Optional[str] = None
    contact: Optional[ContactRef] = None
    date: Optional[str] = None
    due_date: Optional[str] = None
    status: Optional[str] = None
    line_amount_types: Optional[str] = None
    line_items: Optional[list[LineItem]] = None
    sub_total: Optional[float] = None
    total_tax: Optional[float] = None
    total: Optional[float] = None
    amount_due: Optional[float] = None
    amount_paid: Optional[float] = None
    currency_code: Optional[str] = None
    reference: Optional[str] = None
    updated_date_utc: Optional[str] = Field(default=None, alias="UpdatedDateUTC")


# ==================== Payments / accounts ====================


class InvoiceRef(XeroModel):
    invoice_id: Optional[str] = Field(default=None, alias="InvoiceID")
    invoice_number: Optional[str] = None


class AccountRef(XeroModel):
    account_id: Optional[str] = Field(default=None, alias="AccountID")
    code: Optional[str] = None


class Payment(XeroModel):
    payment_id: Optional[str] = Field(default=None, alias="PaymentID")
    date: Optional[str] = None
    amount: Optional[float] = None
    currency_rate: Optional[float] = None
    reference: Optional[str] = None
    status: Optional[str] = None
    payment_type: Optional[str] = None
    invoice: Optional[InvoiceRef] = None
    account: Optional[AccountRef] = None


class Account(XeroModel):
    account_id: Optional[str] = Field(default=None, alias="AccountID")
    code: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    tax_type: Optional[str] = None
    description: Optional[str] = None
    bank_account_number: Optional[str] = None
    currency_code: Optional[str] = None
    enable_payments_to_account: Optional[bool] = None


# ==================== Other transactions ====================


class CreditNote(XeroModel):
    credit_note_id: Optional[str] = Field(default=None, alias="CreditNoteID")
    credit_note_number: Optional[str] = None
    type: Optional[str] = None
    contact: Optional[ContactRef] = None
    date: Optional[str] = None
    status: Optional[str] = None
    total: Optional[float] = None
    remaining_credit: Optional[float] = None
    currency_code: Optional[str] = None


class BankTransaction(XeroModel):
    bank_transaction_id: Optional[str] = Field(default=None, alias="BankTransactionID")
    type: Optional[str] = None
    contact: Optional[ContactRef] = None
    date: Optional[str] = None
    status: Optional[str] = None
    total: Optional[float] = None
    is_reconciled: Optional[bool] = None
    reference: Optional[str] = None


class Prepayment(XeroModel):
    prepayment_id: Optional[str] = Field(default=None, alias="PrepaymentID")
    type: Optional[str] = None
    contact: Optional[ContactRef] = None
    date: Optional[str] = None
    status: Optional[str] = None
    total: Optional[float] = None
    remaining_credit: Optional[float] = None


class Overpayment(XeroModel):
    overpayment_id: Optional[str] = Field(default=None, alias="OverpaymentID")
    type: Optional[str] = None
    contact: Optional[ContactRef] = None
    date: Optional[str] = None
    status: Optional[str] = None
    total: Optional[float] = None
    remaining_credit: Optional[float] = None


class Quote(XeroModel):
    quote_id: Optional[str] = Field(default=None, alias="QuoteID")
    quote_number: Optional[str] = None
    reference: Optional[str] = None
    contact: Optional[ContactRef] = None
    date_string: Optional[str] = None
    expiry_date_string: Optional[str] = None
    status: Optional[str] = None
    title: Optional[str] = None
    line_items: Optional[list[LineItem]] = None
    total: Optional[float] = None
    currency_code: Optional[str] = None


# ==================== Settings / reference data ====================


class Item(XeroModel):
    item_id: Optional[str] = Field(default=None, alias="ItemID")
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    is_sold: Optional[bool] = None
    is_purchased: Optional[bool] = None


class TaxRate(XeroModel):
    name: Optional[str] = None
    tax_type: Optional[str] = None
    status: Optional[str] = None
    effective_rate: Optional[float] = None
    display_tax_rate: Optional[float] = None


class Organisation(XeroModel):
    organisation_id: Optional[str] = Field(default=None, alias="OrganisationID")
    name: Optional[str] = None
    legal_name: Optional[str] = None
    short_code: Optional[str] = None
    base_currency: Optional[str] = None
    country_code: Optional[str] = None
    organisation_type: Optional[str] = None
    financial_year_end_day: Optional[int] = None
    financial_year_end_month: Optional[int] = None
    timezone: Optional[str] = None


class Report(XeroModel):
    """Report payload; rows are passed through as returned by Xero."""

    report_id: Optional[str] = Field(default=None, alias="ReportID")
    report_name: Optional[str] = None
    report_type: Optional[str] = None
    report_titles: Optional[list[str]] = None
    report_date: Optional[str] = None
    rows: Optional[list[dict[str, Any]]] = None
    updated_date_utc: Optional[str] = Field(default=None, alias="UpdatedDateUTC")
