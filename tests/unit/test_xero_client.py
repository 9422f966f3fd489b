"""Tests for XeroClient against a fake Xero API."""

import base64
import json
from datetime import date
from urllib.parse import parse_qs

import pytest

from xero_accounting.cache import CacheManager
from xero_accounting.xero.client import XeroClient
from xero_accounting.xero.errors import (
    XeroAPIError,
    XeroAuthError,
    XeroConfigError,
    XeroNotFoundError,
)
from xero_accounting.xero.models import Contact, LineItemInput


CONTACTS = {"Contacts": [{"ContactID": "c-1", "Name": "Acme Ltd", "EmailAddress": "ap@acme.test"}]}
ACCOUNTS = {"Accounts": [
    {"AccountID": "acc-200", "Code": "200", "Name": "Sales", "Type": "REVENUE"},
    {"AccountID": "acc-090", "Code": "090", "Name": "Business Bank", "Type": "BANK"},
]}


def body(request):
    return json.loads(request.content)


def echo_created(collection, id_field, new_id):
    """Route payload returning the posted entity with an ID assigned."""

    def respond(request):
        entity = dict(body(request)[collection][0])
        entity.setdefault(id_field, new_id)
        return {collection: [entity]}

    return respond


class TestAuthAndTenant:
    """Tests for token handling and tenant discovery."""

    @pytest.mark.asyncio
    async def test_token_requested_once(self, xero_client, xero_api):
        xero_api.add("GET", "/Invoices", {"Invoices": []})

        await xero_client.list_invoices()
        await xero_client.list_invoices()

        token_calls = xero_api.calls("POST", "/connect/token")
        assert len(token_calls) == 1

        token_request = token_calls[0]
        form = parse_qs(token_request.content.decode())
        assert form["grant_type"] == ["client_credentials"]
        assert "accounting.transactions" in form["scope"][0]
        expected_auth = base64.b64encode(b"client-id:client-secret").decode()
        assert token_request.headers["Authorization"] == f"Basic {expected_auth}"

        for request in xero_api.calls("GET", "/Invoices"):
            assert request.headers["Authorization"] == "Bearer token-abc"

    @pytest.mark.asyncio
    async def test_oauth_error(self, xero_client, xero_api):
        xero_api.token_status = 400
        xero_api.token_payload = {"error": "invalid_client"}

        with pytest.raises(XeroAuthError, match="invalid_client"):
            await xero_client.list_invoices()

    @pytest.mark.asyncio
    async def test_token_response_without_token(self, xero_client, xero_api):
        xero_api.token_payload = {"token_type": "Bearer"}

        with pytest.raises(XeroAuthError, match="Unexpected Xero response"):
            await xero_client.list_invoices()

    @pytest.mark.asyncio
    async def test_missing_credentials(self, test_settings, memory_cache, xero_api):
        settings = test_settings.model_copy(update={"xero_client_id": None})
        client = XeroClient(settings, memory_cache, transport=xero_api.transport)

        with pytest.raises(XeroConfigError):
            await client.list_invoices()

        assert xero_api.requests == []

    @pytest.mark.asyncio
    async def test_tenant_discovered_and_remembered(self, xero_client, xero_api, test_settings, memory_cache):
        xero_api.add("GET", "/Invoices", {"Invoices": []})

        await xero_client.list_invoices()

        assert len(xero_api.calls("GET", "/connections")) == 1
        assert xero_api.calls("GET", "/Invoices")[0].headers["Xero-Tenant-Id"] == "tenant-1"
        assert test_settings.tenant_id_path.read_text() == "tenant-1"

        # A new client (next CLI run) reuses the remembered tenant
        second = XeroClient(test_settings, memory_cache, transport=xero_api.transport)
        await second.list_invoices()
        await second.aclose()

        assert len(xero_api.calls("GET", "/connections")) == 1

    @pytest.mark.asyncio
    async def test_explicit_tenant_wins(self, xero_client, xero_api):
        xero_api.add("GET", "/Invoices", {"Invoices": []})

        await xero_client.list_invoices(tenant_id="tenant-explicit")

        assert xero_api.calls("GET", "/connections") == []
        assert xero_api.calls("GET", "/Invoices")[0].headers["Xero-Tenant-Id"] == "tenant-explicit"

    @pytest.mark.asyncio
    async def test_no_connected_organisation(self, xero_client, xero_api):
        xero_api.connections = []

        with pytest.raises(XeroNotFoundError, match="No Xero organisations connected"):
            await xero_client.list_invoices()

    @pytest.mark.asyncio
    async def test_get_connections(self, xero_client, xero_api):
        connections = await xero_client.get_connections()

        assert connections[0].tenant_id == "tenant-1"
        assert connections[0].tenant_name == "Demo Company"
        assert "Xero-Tenant-Id" not in xero_api.calls("GET", "/connections")[0].headers


class TestRequests:
    """Tests for request construction and error mapping."""

    @pytest.mark.asyncio
    async def test_empty_query_params_dropped(self, xero_client, xero_api):
        xero_api.add("GET", "/Invoices", {"Invoices": []})

        await xero_client.list_invoices(page=2, where="", order=None)

        params = dict(xero_api.calls("GET", "/Invoices")[0].url.params)
        assert params == {"page": "2"}

    @pytest.mark.asyncio
    async def test_api_error(self, xero_client, xero_api):
        xero_api.add("GET", "/Invoices", {"Message": "Server error"}, status=500)

        with pytest.raises(XeroAPIError) as exc_info:
            await xero_client.list_invoices()

        assert exc_info.value.status_code == 500
        assert "Xero API error (500)" in str(exc_info.value)
        assert "Server error" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_single_entity_none_when_empty(self, xero_client, xero_api):
        xero_api.add("GET", "/Invoices/inv-404", {"Invoices": []})

        assert await xero_client.get_invoice("inv-404") is None

    @pytest.mark.asyncio
    async def test_get_invoice(self, xero_client, xero_api):
        xero_api.add("GET", "/Invoices/inv-1", {"Invoices": [
            {"InvoiceID": "inv-1", "InvoiceNumber": "INV-0001", "Total": 115.0, "Contact": {"ContactID": "c-1"}},
        ]})

        invoice = await xero_client.get_invoice("inv-1")

        assert invoice.invoice_number == "INV-0001"
        assert invoice.total == 115.0
        assert invoice.contact.contact_id == "c-1"

    @pytest.mark.asyncio
    async def test_report_params(self, xero_client, xero_api):
        xero_api.add("GET", "/Reports/TrialBalance", {"Reports": [{"ReportID": "TrialBalance", "Rows": []}]})
        xero_api.add("GET", "/Reports/ProfitAndLoss", {"Reports": [{"ReportName": "Profit and Loss"}]})

        report = await xero_client.get_trial_balance(date="2024-03-31", payments_only=True)
        await xero_client.get_profit_and_loss(from_date="2024-01-01", periods=3, timeframe="MONTH")

        assert report.report_id == "TrialBalance"
        trial = dict(xero_api.calls("GET", "/Reports/TrialBalance")[0].url.params)
        assert trial == {"date": "2024-03-31", "paymentsOnly": "true"}
        pnl = dict(xero_api.calls("GET", "/Reports/ProfitAndLoss")[0].url.params)
        assert pnl == {"fromDate": "2024-01-01", "periods": "3", "timeframe": "MONTH"}

    @pytest.mark.asyncio
    async def test_aged_receivables_contact(self, xero_client, xero_api):
        xero_api.add("GET", "/Reports/AgedReceivablesByContact", {"Reports": [{}]})

        await xero_client.get_aged_receivables(contact_id="c-1")

        params = dict(xero_api.calls("GET", "/Reports/AgedReceivablesByContact")[0].url.params)
        assert params == {"contactId": "c-1"}


class TestCachedReads:
    """Tests for cached reads and write invalidation."""

    @pytest.mark.asyncio
    async def test_contacts_cached(self, xero_client, xero_api):
        xero_api.add("GET", "/Contacts", CONTACTS)

        first = await xero_client.list_contacts()
        second = await xero_client.list_contacts()

        assert len(xero_api.calls("GET", "/Contacts")) == 1
        assert isinstance(second[0], Contact)
        assert first[0].contact_id == second[0].contact_id == "c-1"
        assert second[0].email_address == "ap@acme.test"

    @pytest.mark.asyncio
    async def test_contacts_use_contacts_ttl(self, xero_client, xero_api, clock):
        xero_api.add("GET", "/Contacts", CONTACTS)

        await xero_client.list_contacts()
        clock.advance(3599)
        await xero_client.list_contacts()
        assert len(xero_api.calls("GET", "/Contacts")) == 1

        clock.advance(2)
        await xero_client.list_contacts()
        assert len(xero_api.calls("GET", "/Contacts")) == 2

    @pytest.mark.asyncio
    async def test_bypass_cache(self, xero_client, xero_api):
        xero_api.add("GET", "/Contacts", CONTACTS)

        await xero_client.list_contacts()
        await xero_client.list_contacts(bypass_cache=True)

        assert len(xero_api.calls("GET", "/Contacts")) == 2

    @pytest.mark.asyncio
    async def test_cache_keys_include_tenant(self, xero_client, xero_api):
        xero_api.add("GET", "/Accounts", ACCOUNTS)

        await xero_client.list_accounts(tenant_id="tenant-a")
        await xero_client.list_accounts(tenant_id="tenant-b")
        await xero_client.list_accounts(tenant_id="tenant-a")

        assert len(xero_api.calls("GET", "/Accounts")) == 2

    @pytest.mark.asyncio
    async def test_create_contact_invalidates_contact_lists(self, xero_client, xero_api, memory_cache):
        xero_api.add("GET", "/Contacts", CONTACTS)
        xero_api.add("GET", "/Accounts", ACCOUNTS)
        xero_api.add("POST", "/Contacts", echo_created("Contacts", "ContactID", "c-2"))

        await xero_client.list_contacts()
        await xero_client.list_contacts(where='Name=="Acme Ltd"')
        await xero_client.list_accounts()

        contact = await xero_client.create_contact(name="Globex", email="hi@globex.test", phone="555-0100")

        assert contact.contact_id == "c-2"
        posted = body(xero_api.calls("POST", "/Contacts")[0])["Contacts"][0]
        assert posted == {
            "Name": "Globex",
            "EmailAddress": "hi@globex.test",
            "Phones": [{"PhoneType": "DEFAULT", "PhoneNumber": "555-0100"}],
        }

        await xero_client.list_contacts()
        await xero_client.list_accounts()
        assert len(xero_api.calls("GET", "/Contacts")) == 3
        assert len(xero_api.calls("GET", "/Accounts")) == 1

    @pytest.mark.asyncio
    async def test_update_contact_invalidates_contact_lists(self, xero_client, xero_api):
        xero_api.add("GET", "/Contacts", CONTACTS)
        xero_api.add("POST", "/Contacts/c-1", echo_created("Contacts", "ContactID", "c-1"))

        await xero_client.list_contacts()
        updated = await xero_client.update_contact("c-1", email="new@acme.test")
        await xero_client.list_contacts()

        assert updated.email_address == "new@acme.test"
        posted = body(xero_api.calls("POST", "/Contacts/c-1")[0])["Contacts"][0]
        assert posted == {"ContactID": "c-1", "EmailAddress": "new@acme.test"}
        assert len(xero_api.calls("GET", "/Contacts")) == 2

    @pytest.mark.asyncio
    async def test_reference_data_cached(self, xero_client, xero_api):
        xero_api.add("GET", "/TaxRates", {"TaxRates": [{"Name": "GST on Income", "TaxType": "OUTPUT", "EffectiveRate": 15.0}]})
        xero_api.add("GET", "/Organisation", {"Organisations": [{"OrganisationID": "org-1", "Name": "Demo Company"}]})

        for _ in range(2):
            rates = await xero_client.list_tax_rates()
            organisation = await xero_client.get_organisation()

        assert rates[0].effective_rate == 15.0
        assert organisation.organisation_id == "org-1"
        assert len(xero_api.calls("GET", "/TaxRates")) == 1
        assert len(xero_api.calls("GET", "/Organisation")) == 1

    @pytest.mark.asyncio
    async def test_uncached_reads_always_fetch(self, xero_client, xero_api):
        xero_api.add("GET", "/Payments", {"Payments": []})

        await xero_client.list_payments()
        await xero_client.list_payments()

        assert len(xero_api.calls("GET", "/Payments")) == 2

    @pytest.mark.asyncio
    async def test_disable_cache(self, xero_client, xero_api):
        xero_api.add("GET", "/Contacts", CONTACTS)

        xero_client.disable_cache()
        await xero_client.list_contacts()
        await xero_client.list_contacts()
        xero_client.enable_cache()
        await xero_client.list_contacts()
        await xero_client.list_contacts()

        assert len(xero_api.calls("GET", "/Contacts")) == 3

    @pytest.mark.asyncio
    async def test_clear_cache_forgets_tenant(self, xero_client, xero_api, test_settings):
        xero_api.add("GET", "/Contacts", CONTACTS)
        await xero_client.list_contacts()
        assert test_settings.tenant_id_path.exists()

        cleared = await xero_client.clear_cache()

        assert cleared == 1
        assert not test_settings.tenant_id_path.exists()
        await xero_client.list_contacts()
        assert len(xero_api.calls("GET", "/connections")) == 2

    @pytest.mark.asyncio
    async def test_cache_admin_without_credentials(self, test_settings, memory_cache, xero_api):
        settings = test_settings.model_copy(update={"xero_client_id": None, "xero_client_secret": None})
        client = XeroClient(settings, memory_cache, transport=xero_api.transport)

        stats = await client.get_cache_stats()

        assert stats.hits == 0
        assert await client.invalidate_cache_key("contacts") is False
        assert await client.clear_cache() == 0
        await client.aclose()


class TestWrites:
    """Tests for invoice and payment creation."""

    @pytest.mark.asyncio
    async def test_create_invoice_for_existing_contact(self, xero_client, xero_api):
        xero_api.add("GET", "/Contacts", CONTACTS)
        xero_api.add("POST", "/Invoices", echo_created("Invoices", "InvoiceID", "inv-9"))

        invoice = await xero_client.create_invoice(
            contact_name="Acme Ltd",
            line_items=[LineItemInput(description="Consulting", quantity=2, unit_amount=150)],
            due_date="2024-02-01",
        )

        assert invoice.invoice_id == "inv-9"
        contacts_request = xero_api.calls("GET", "/Contacts")[0]
        assert contacts_request.url.params["where"] == 'Name=="Acme Ltd"'
        assert xero_api.calls("POST", "/Contacts") == []

        posted = body(xero_api.calls("POST", "/Invoices")[0])["Invoices"][0]
        assert posted["Type"] == "ACCREC"
        assert posted["Status"] == "DRAFT"
        assert posted["Contact"] == {"ContactID": "c-1"}
        assert posted["DueDate"] == "2024-02-01"
        assert posted["LineItems"] == [
            {"Description": "Consulting", "Quantity": 2.0, "UnitAmount": 150.0, "AccountCode": "200"},
        ]

    @pytest.mark.asyncio
    async def test_create_invoice_creates_missing_contact(self, xero_client, xero_api):
        xero_api.add("GET", "/Contacts", {"Contacts": []})
        xero_api.add("POST", "/Contacts", echo_created("Contacts", "ContactID", "c-new"))
        xero_api.add("POST", "/Invoices", echo_created("Invoices", "InvoiceID", "inv-1"))

        await xero_client.create_invoice(
            contact_name="New Customer",
            line_items=[LineItemInput(unit_amount=10, account_code="260")],
            type="ACCPAY",
        )

        assert body(xero_api.calls("POST", "/Contacts")[0]) == {"Contacts": [{"Name": "New Customer"}]}
        posted = body(xero_api.calls("POST", "/Invoices")[0])["Invoices"][0]
        assert posted["Contact"] == {"ContactID": "c-new"}
        assert posted["Type"] == "ACCPAY"
        assert posted["LineItems"][0]["AccountCode"] == "260"
        assert posted["LineItems"][0]["Description"] == "Invoice item"

    @pytest.mark.asyncio
    async def test_create_invoice_without_result(self, xero_client, xero_api):
        xero_api.add("GET", "/Contacts", CONTACTS)
        xero_api.add("POST", "/Invoices", {"Invoices": []})

        with pytest.raises(XeroNotFoundError, match="Failed to create invoice"):
            await xero_client.create_invoice("Acme Ltd", [LineItemInput(unit_amount=1)])

    @pytest.mark.asyncio
    async def test_update_invoice(self, xero_client, xero_api):
        xero_api.add("POST", "/Invoices/inv-1", echo_created("Invoices", "InvoiceID", "inv-1"))

        invoice = await xero_client.update_invoice("inv-1", status="AUTHORISED")

        assert invoice.status == "AUTHORISED"
        posted = body(xero_api.calls("POST", "/Invoices/inv-1")[0])
        assert posted == {"Invoices": [{"InvoiceID": "inv-1", "Status": "AUTHORISED"}]}

    @pytest.mark.asyncio
    async def test_create_payment(self, xero_client, xero_api):
        xero_api.add("GET", "/Accounts", ACCOUNTS)
        xero_api.add("PUT", "/Payments", echo_created("Payments", "PaymentID", "pay-1"))

        payment = await xero_client.create_payment(
            invoice_id="inv-1", account_code="090", amount=115.0, reference="Bank transfer"
        )

        assert payment.payment_id == "pay-1"
        posted = body(xero_api.calls("PUT", "/Payments")[0])["Payments"][0]
        assert posted == {
            "Invoice": {"InvoiceID": "inv-1"},
            "Account": {"AccountID": "acc-090"},
            "Amount": 115.0,
            "Date": date.today().isoformat(),
            "Reference": "Bank transfer",
        }

    @pytest.mark.asyncio
    async def test_create_payment_with_currency_rate(self, xero_client, xero_api):
        xero_api.add("GET", "/Accounts", ACCOUNTS)
        xero_api.add("PUT", "/Payments", echo_created("Payments", "PaymentID", "pay-2"))

        await xero_client.create_payment("inv-1", "090", 50.0, date="2024-01-15", currency_rate=1.25)

        posted = body(xero_api.calls("PUT", "/Payments")[0])["Payments"][0]
        assert posted["Date"] == "2024-01-15"
        assert posted["CurrencyRate"] == 1.25

    @pytest.mark.asyncio
    async def test_create_payment_unknown_account(self, xero_client, xero_api):
        xero_api.add("GET", "/Accounts", ACCOUNTS)

        with pytest.raises(XeroNotFoundError, match="Account with code 999 not found"):
            await xero_client.create_payment("inv-1", "999", 10.0)

        assert xero_api.calls("PUT", "/Payments") == []
