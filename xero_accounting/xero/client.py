"""Async client for the Xero Accounting REST API."""

import time
from datetime import date
from typing import Any, Optional, TypeVar

import httpx
import structlog
from pydantic import BaseModel

from xero_accounting.cache import CacheManager, CacheStats, make_cache_key
from xero_accounting.config.settings import Settings
from xero_accounting.logging import log_xero_request

from .auth import TokenManager
from .errors import XeroAPIError, XeroNotFoundError
from .models import (
    Account,
    BankTransaction,
    Contact,
    ContactGroup,
    CreditNote,
    Invoice,
    InvoiceType,
    Item,
    LineItemInput,
    Organisation,
    Overpayment,
    Payment,
    Prepayment,
    Quote,
    Report,
    TaxRate,
    Timeframe,
    XeroConnection,
)
from .tenant import TenantStore

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

# Default sales account for invoice line items
DEFAULT_SALES_ACCOUNT_CODE = "200"


class XeroClient:
    """Xero API client with OAuth client credentials and read-through caching.

    Slow-changing reads (contacts, accounts, tax rates, organisation) go
    through the injected cache; writes that change them invalidate the
    affected keys. Use as an async context manager so the HTTP client is
    closed.
    """

    def __init__(
        self,
        settings: Settings,
        cache: CacheManager,
        tenant_store: Optional[TenantStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            settings: Application settings (credentials, endpoints, TTLs)
            cache: Cache for read operations
            tenant_store: Where the discovered tenant ID is remembered
            transport: Optional httpx transport (tests)
        """
        self._settings = settings
        self._cache = cache
        self._tenant_store = tenant_store or TenantStore(settings.tenant_id_path)
        self._http = httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )
        self._tokens: Optional[TokenManager] = None
        self._tenant_id: Optional[str] = self._tenant_store.load()

    async def __aenter__(self) -> "XeroClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def cache(self) -> CacheManager:
        return self._cache

    # ==================== Cache control ====================

    def disable_cache(self) -> None:
        """Disable caching for all subsequent requests."""
        self._cache.disable()

    def enable_cache(self) -> None:
        """Re-enable caching after it was disabled."""
        self._cache.enable()

    async def get_cache_stats(self) -> CacheStats:
        return await self._cache.get_stats()

    async def invalidate_cache_key(self, key: str) -> bool:
        return await self._cache.invalidate(key)

    async def clear_cache(self) -> int:
        """Clear cached data and forget the remembered tenant ID.

        Returns:
            Number of cache entries removed
        """
        self._tenant_store.clear()
        self._tenant_id = None
        return await self._cache.clear()

    # ==================== Auth / tenant ====================

    async def _access_token(self) -> str:
        if self._tokens is None:
            credentials = self._settings.resolve_credentials()
            self._tokens = TokenManager(
                self._http,
                client_id=credentials.client_id,
                client_secret=credentials.client_secret,
                token_url=self._settings.xero_token_url,
                scopes=self._settings.xero_scopes,
            )
        return await self._tokens.get_access_token()

    async def _resolve_tenant_id(self, tenant_id: Optional[str] = None) -> str:
        """Explicit tenant ID, else the remembered one, else the first connection."""
        if tenant_id:
            return tenant_id
        if self._tenant_id:
            return self._tenant_id

        connections = await self.get_connections()
        if not connections:
            raise XeroNotFoundError(
                "No Xero organisations connected. "
                "Please connect an organisation in the Xero Developer Portal."
            )

        self._tenant_id = connections[0].tenant_id
        self._tenant_store.save(self._tenant_id)
        logger.info(
            "Discovered Xero tenant",
            tenant_id=self._tenant_id,
            tenant_name=connections[0].tenant_name,
        )
        return self._tenant_id

    # ==================== HTTP ====================

    async def _request(
        self,
        method: str,
        endpoint: str,
        body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
        skip_tenant: bool = False,
    ) -> Any:
        """Make an authenticated request to the Xero API.

        Args:
            method: HTTP method
            endpoint: Path under the API base, or an absolute URL
            body: JSON body
            params: Query parameters; None and empty values are dropped
            tenant_id: Tenant override
            skip_tenant: Omit the Xero-Tenant-Id header

        Returns:
            Decoded JSON response

        Raises:
            XeroAPIError: On a non-success status
        """
        token = await self._access_token()

        url = endpoint if endpoint.startswith("http") else f"{self._settings.xero_api_base}{endpoint}"
        query = {k: str(v) for k, v in (params or {}).items() if v is not None and v != ""}

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if not skip_tenant:
            headers["Xero-Tenant-Id"] = await self._resolve_tenant_id(tenant_id)

        start = time.perf_counter()
        try:
            response = await self._http.request(
                method, url, params=query or None, json=body, headers=headers
            )
        except httpx.HTTPError as e:
            log_xero_request(method, endpoint, None, (time.perf_counter() - start) * 1000, error=str(e))
            raise

        log_xero_request(method, endpoint, response.status_code, (time.perf_counter() - start) * 1000)

        if response.is_error:
            raise XeroAPIError(response.status_code, response.text, url=url)

        return response.json()

    async def _list(
        self,
        endpoint: str,
        collection: str,
        params: Optional[dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        response = await self._request("GET", endpoint, params=params, tenant_id=tenant_id)
        return response.get(collection) or []

    async def _first(
        self,
        endpoint: str,
        collection: str,
        params: Optional[dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        items = await self._list(endpoint, collection, params=params, tenant_id=tenant_id)
        return items[0] if items else None

    async def _write(
        self,
        method: str,
        endpoint: str,
        collection: str,
        entity: dict[str, Any],
        tenant_id: Optional[str],
        what: str,
    ) -> dict[str, Any]:
        response = await self._request(
            method, endpoint, body={collection: [entity]}, tenant_id=tenant_id
        )
        items = response.get(collection) or []
        if not items:
            raise XeroNotFoundError(f"Failed to {what} - no {what.split()[-1]} returned")
        return items[0]

    @staticmethod
    def _list_params(
        page: Optional[int] = None,
        where: Optional[str] = None,
        order: Optional[str] = None,
    ) -> dict[str, Any]:
        return {"page": page, "where": where, "order": order}

    @staticmethod
    def _parse_all(model: type[M], items: list[dict[str, Any]]) -> list[M]:
        return [model.model_validate(item) for item in items]

    @staticmethod
    def _parse_one(model: type[M], item: Optional[dict[str, Any]]) -> Optional[M]:
        return model.model_validate(item) if item is not None else None

    # ==================== Connections ====================

    async def get_connections(self) -> list[XeroConnection]:
        """Get connected Xero organisations (used to discover tenant IDs)."""
        connections = await self._request(
            "GET", self._settings.xero_connections_url, skip_tenant=True
        )
        return self._parse_all(XeroConnection, connections or [])

    # ==================== Invoices ====================

    async def list_invoices(
        self,
        page: Optional[int] = None,
        where: Optional[str] = None,
        order: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[Invoice]:
        """List invoices.

        Args:
            page: Page number
            where: Xero filter, e.g. 'Status=="AUTHORISED"'
            order: Sort order, e.g. 'Date DESC'
            tenant_id: Tenant override
        """
        items = await self._list(
            "/Invoices", "Invoices", self._list_params(page, where, order), tenant_id
        )
        return self._parse_all(Invoice, items)

    async def get_invoice(self, invoice_id: str, tenant_id: Optional[str] = None) -> Optional[Invoice]:
        item = await self._first(f"/Invoices/{invoice_id}", "Invoices", tenant_id=tenant_id)
        return self._parse_one(Invoice, item)

    async def create_invoice(
        self,
        contact_name: str,
        line_items: list[LineItemInput],
        type: InvoiceType = "ACCREC",
        due_date: Optional[str] = None,
        reference: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Invoice:
        """Create a DRAFT invoice, creating the contact if no contact has that name.

        Args:
            contact_name: Contact/customer name
            line_items: Invoice lines
            type: "ACCREC" (sales) or "ACCPAY" (purchase)
            due_date: Due date (YYYY-MM-DD)
            reference: Invoice reference
            tenant_id: Tenant override
        """
        contacts = await self.list_contacts(where=f'Name=="{contact_name}"', tenant_id=tenant_id)
        if contacts:
            contact_id = contacts[0].contact_id
        else:
            contact_id = (await self.create_contact(name=contact_name, tenant_id=tenant_id)).contact_id

        invoice = {
            "Type": type,
            "Contact": {"ContactID": contact_id},
            "LineItems": [
                {
                    "Description": item.description,
                    "Quantity": item.quantity,
                    "UnitAmount": item.unit_amount,
                    "AccountCode": item.account_code or DEFAULT_SALES_ACCOUNT_CODE,
                }
                for item in line_items
            ],
            "DueDate": due_date,
            "Reference": reference,
            "Status": "DRAFT",
        }
        created = await self._write(
            "POST", "/Invoices", "Invoices", invoice, tenant_id, "create invoice"
        )
        return Invoice.model_validate(created)

    async def update_invoice(
        self,
        invoice_id: str,
        status: Optional[str] = None,
        reference: Optional[str] = None,
        due_date: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Invoice:
        invoice: dict[str, Any] = {"InvoiceID": invoice_id}
        if status:
            invoice["Status"] = status
        if reference:
            invoice["Reference"] = reference
        if due_date:
            invoice["DueDate"] = due_date

        updated = await self._write(
            "POST", f"/Invoices/{invoice_id}", "Invoices", invoice, tenant_id, "update invoice"
        )
        return Invoice.model_validate(updated)

    # ==================== Contacts ====================

    async def list_contacts(
        self,
        page: Optional[int] = None,
        where: Optional[str] = None,
        order: Optional[str] = None,
        tenant_id: Optional[str] = None,
        bypass_cache: bool = False,
    ) -> list[Contact]:
        """List contacts. Cached for the contacts TTL.

        Args:
            page: Page number
            where: Xero filter, e.g. 'Name.Contains("Smith")'
            order: Sort order
            tenant_id: Tenant override
            bypass_cache: Fetch fresh data without touching the cache
        """
        params = self._list_params(page, where, order)
        key = make_cache_key("contacts", {**params, "tenant_id": tenant_id})

        async def fetch() -> list[dict[str, Any]]:
            return await self._list("/Contacts", "Contacts", params, tenant_id)

        items = await self._cache.get_or_fetch(
            key, fetch, ttl=self._settings.cache_ttl_contacts, bypass_cache=bypass_cache
        )
        return self._parse_all(Contact, items)

    async def get_contact(self, contact_id: str, tenant_id: Optional[str] = None) -> Optional[Contact]:
        item = await self._first(f"/Contacts/{contact_id}", "Contacts", tenant_id=tenant_id)
        return self._parse_one(Contact, item)

    async def create_contact(
        self,
        name: str,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Contact:
        """Create a contact. Invalidates cached contact lists."""
        contact = self._contact_body(
            name=name, email=email, first_name=first_name, last_name=last_name, phone=phone
        )
        created = await self._write(
            "POST", "/Contacts", "Contacts", contact, tenant_id, "create contact"
        )
        await self._cache.invalidate_pattern(r"^contacts")
        return Contact.model_validate(created)

    async def update_contact(
        self,
        contact_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Contact:
        """Update a contact. Invalidates cached contact lists."""
        contact = {
            "ContactID": contact_id,
            **self._contact_body(
                name=name, email=email, first_name=first_name, last_name=last_name, phone=phone
            ),
        }
        updated = await self._write(
            "POST", f"/Contacts/{contact_id}", "Contacts", contact, tenant_id, "update contact"
        )
        await self._cache.invalidate_pattern(r"^contacts")
        return Contact.model_validate(updated)

    @staticmethod
    def _contact_body(
        name: Optional[str],
        email: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
        phone: Optional[str],
    ) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if name:
            body["Name"] = name
        if email:
            body["EmailAddress"] = email
        if first_name:
            body["FirstName"] = first_name
        if last_name:
            body["LastName"] = last_name
        if phone:
            body["Phones"] = [{"PhoneType": "DEFAULT", "PhoneNumber": phone}]
        return body

    # ==================== Accounts ====================

    async def list_accounts(
        self,
        where: Optional[str] = None,
        order: Optional[str] = None,
        tenant_id: Optional[str] = None,
        bypass_cache: bool = False,
    ) -> list[Account]:
        """List the chart of accounts. Cached for the reference-data TTL."""
        params = {"where": where, "order": order}
        key = make_cache_key("accounts", {**params, "tenant_id": tenant_id})

        async def fetch() -> list[dict[str, Any]]:
            return await self._list("/Accounts", "Accounts", params, tenant_id)

        items = await self._cache.get_or_fetch(
            key, fetch, ttl=self._settings.cache_ttl_reference, bypass_cache=bypass_cache
        )
        return self._parse_all(Account, items)

    # ==================== Payments ====================

    async def list_payments(
        self,
        page: Optional[int] = None,
        where: Optional[str] = None,
        order: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[Payment]:
        items = await self._list(
            "/Payments", "Payments", self._list_params(page, where, order), tenant_id
        )
        return self._parse_all(Payment, items)

    async def create_payment(
        self,
        invoice_id: str,
        account_code: str,
        amount: float,
        date: Optional[str] = None,
        reference: Optional[str] = None,
        currency_rate: Optional[float] = None,
        tenant_id: Optional[str] = None,
    ) -> Payment:
        """Record a payment against an invoice.

        Args:
            invoice_id: Invoice being paid
            account_code: Code of the account the payment is made from
            amount: Payment amount
            date: Payment date (YYYY-MM-DD), defaults to today
            reference: Payment reference
            currency_rate: Exchange rate override
            tenant_id: Tenant override

        Raises:
            XeroNotFoundError: If no account has the given code
        """
        accounts = await self.list_accounts(tenant_id=tenant_id)
        account = next((a for a in accounts if a.code == account_code), None)
        if account is None:
            raise XeroNotFoundError(f"Account with code {account_code} not found")

        payment: dict[str, Any] = {
            "Invoice": {"InvoiceID": invoice_id},
            "Account": {"AccountID": account.account_id},
            "Amount": amount,
            "Date": date or _today(),
            "Reference": reference,
        }
        if currency_rate is not None:
            payment["CurrencyRate"] = currency_rate

        created = await self._write(
            "PUT", "/Payments", "Payments", payment, tenant_id, "create payment"
        )
        return Payment.model_validate(created)

    # ==================== Other transactions ====================

    async def list_bank_transactions(
        self,
        page: Optional[int] = None,
        where: Optional[str] = None,
        order: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[BankTransaction]:
        items = await self._list(
            "/BankTransactions", "BankTransactions", self._list_params(page, where, order), tenant_id
        )
        return self._parse_all(BankTransaction, items)

    async def list_credit_notes(
        self,
        page: Optional[int] = None,
        where: Optional[str] = None,
        order: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[CreditNote]:
        items = await self._list(
            "/CreditNotes", "CreditNotes", self._list_params(page, where, order), tenant_id
        )
        return self._parse_all(CreditNote, items)

    async def list_quotes(
        self,
        page: Optional[int] = None,
        where: Optional[str] = None,
        order: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[Quote]:
        items = await self._list(
            "/Quotes", "Quotes", self._list_params(page, where, order), tenant_id
        )
        return self._parse_all(Quote, items)

    async def get_quote(self, quote_id: str, tenant_id: Optional[str] = None) -> Optional[Quote]:
        item = await self._first(f"/Quotes/{quote_id}", "Quotes", tenant_id=tenant_id)
        return self._parse_one(Quote, item)

    async def list_overpayments(
        self,
        page: Optional[int] = None,
        where: Optional[str] = None,
        order: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[Overpayment]:
        items = await self._list(
            "/Overpayments", "Overpayments", self._list_params(page, where, order), tenant_id
        )
        return self._parse_all(Overpayment, items)

    async def list_prepayments(
        self,
        page: Optional[int] = None,
        where: Optional[str] = None,
        order: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[Prepayment]:
        items = await self._list(
            "/Prepayments", "Prepayments", self._list_params(page, where, order), tenant_id
        )
        return self._parse_all(Prepayment, items)

    # ==================== Reference data ====================

    async def list_items(self, tenant_id: Optional[str] = None) -> list[Item]:
        return self._parse_all(Item, await self._list("/Items", "Items", tenant_id=tenant_id))

    async def list_contact_groups(self, tenant_id: Optional[str] = None) -> list[ContactGroup]:
        items = await self._list("/ContactGroups", "ContactGroups", tenant_id=tenant_id)
        return self._parse_all(ContactGroup, items)

    async def list_tax_rates(
        self, tenant_id: Optional[str] = None, bypass_cache: bool = False
    ) -> list[TaxRate]:
        """List tax rates. Cached for the reference-data TTL."""
        key = make_cache_key("tax_rates", {"tenant_id": tenant_id})

        async def fetch() -> list[dict[str, Any]]:
            return await self._list("/TaxRates", "TaxRates", tenant_id=tenant_id)

        items = await self._cache.get_or_fetch(
            key, fetch, ttl=self._settings.cache_ttl_reference, bypass_cache=bypass_cache
        )
        return self._parse_all(TaxRate, items)

    async def get_organisation(
        self, tenant_id: Optional[str] = None, bypass_cache: bool = False
    ) -> Optional[Organisation]:
        """Get organisation details. Cached for the reference-data TTL."""
        key = make_cache_key("organisation", {"tenant_id": tenant_id})

        async def fetch() -> Optional[dict[str, Any]]:
            return await self._first("/Organisation", "Organisations", tenant_id=tenant_id)

        item = await self._cache.get_or_fetch(
            key, fetch, ttl=self._settings.cache_ttl_reference, bypass_cache=bypass_cache
        )
        return self._parse_one(Organisation, item)

    # ==================== Reports ====================

    async def _report(
        self, name: str, params: dict[str, Any], tenant_id: Optional[str]
    ) -> Optional[Report]:
        item = await self._first(f"/Reports/{name}", "Reports", params=params, tenant_id=tenant_id)
        return self._parse_one(Report, item)

    async def get_profit_and_loss(
        self,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        periods: Optional[int] = None,
        timeframe: Optional[Timeframe] = None,
        tenant_id: Optional[str] = None,
    ) -> Optional[Report]:
        params = {"fromDate": from_date, "toDate": to_date, "periods": periods, "timeframe": timeframe}
        return await self._report("ProfitAndLoss", params, tenant_id)

    async def get_balance_sheet(
        self,
        date: Optional[str] = None,
        periods: Optional[int] = None,
        timeframe: Optional[Timeframe] = None,
        tenant_id: Optional[str] = None,
    ) -> Optional[Report]:
        params = {"date": date, "periods": periods, "timeframe": timeframe}
        return await self._report("BalanceSheet", params, tenant_id)

    async def get_trial_balance(
        self,
        date: Optional[str] = None,
        payments_only: Optional[bool] = None,
        tenant_id: Optional[str] = None,
    ) -> Optional[Report]:
        params = {"date": date, "paymentsOnly": "true" if payments_only else None}
        return await self._report("TrialBalance", params, tenant_id)

    async def get_aged_receivables(
        self,
        contact_id: Optional[str] = None,
        date: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Optional[Report]:
        params = {"contactId": contact_id, "date": date, "fromDate": from_date, "toDate": to_date}
        return await self._report("AgedReceivablesByContact", params, tenant_id)

    async def get_aged_payables(
        self,
        contact_id: Optional[str] = None,
        date: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Optional[Report]:
        params = {"contactId": contact_id, "date": date, "fromDate": from_date, "toDate": to_date}
        return await self._report("AgedPayablesByContact", params, tenant_id)


def _today() -> str:
    return date.today().isoformat()
