"""Command registry shared by the CLI and the HTTP service.

Each command pairs a pydantic arguments model with an async handler taking
(client, args, bypass_cache). Callers pass raw argument dicts to
execute_command, which validates them, runs the handler and returns a
JSON-ready result.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from xero_accounting.cache import CacheStats
from xero_accounting.xero.client import XeroClient
from xero_accounting.xero.models import InvoiceType, LineItemInput, Timeframe

logger = structlog.get_logger()

Handler = Callable[[XeroClient, Any, bool], Awaitable[Any]]


class UnknownCommandError(LookupError):
    """No command is registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown command: {name}")


@dataclass(frozen=True)
class Command:
    name: str
    description: str
    args_model: type[BaseModel]
    run: Handler


COMMANDS: dict[str, Command] = {}


def command(name: str, args_model: type[BaseModel], description: str):
    """Register the decorated handler under name."""

    def decorator(func: Handler) -> Handler:
        COMMANDS[name] = Command(name, description, args_model, func)
        return func

    return decorator


# ==================== Argument models ====================


class CommandArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TenantArgs(CommandArgs):
    tenant_id: Optional[str] = Field(
        default=None, description="Xero tenant ID (defaults to the first connection)"
    )


class ListArgs(TenantArgs):
    page: Optional[int] = Field(default=None, ge=1, description="Page number")
    where: Optional[str] = Field(default=None, description="Xero filter expression")
    order: Optional[str] = Field(default=None, description="Sort order, e.g. 'Date DESC'")


class IdArgs(TenantArgs):
    id: str = Field(min_length=1, description="Entity ID")


class CreateInvoiceArgs(TenantArgs):
    contact: str = Field(min_length=1, description="Contact name")
    amount: float = Field(ge=0, description="Unit amount")
    description: str = Field(default="Invoice item", description="Line description")
    quantity: float = Field(default=1, ge=0.01, description="Quantity")
    account_code: Optional[str] = Field(default=None, description="Account code (default 200)")
    type: InvoiceType = Field(default="ACCREC", description="ACCREC (sales) or ACCPAY (bill)")
    due_date: Optional[str] = Field(default=None, description="Due date (YYYY-MM-DD)")
    reference: Optional[str] = Field(default=None, description="Invoice reference")


class UpdateInvoiceArgs(IdArgs):
    status: Optional[str] = Field(default=None, description="New status, e.g. AUTHORISED")
    reference: Optional[str] = Field(default=None, description="Invoice reference")
    due_date: Optional[str] = Field(default=None, description="Due date (YYYY-MM-DD)")


class ContactFields(CommandArgs):
    email: Optional[str] = Field(default=None, description="Email address")
    first_name: Optional[str] = Field(default=None, description="First name")
    last_name: Optional[str] = Field(default=None, description="Last name")
    phone: Optional[str] = Field(default=None, description="Phone number")


class CreateContactArgs(ContactFields, TenantArgs):
    name: str = Field(min_length=1, description="Contact name")


class UpdateContactArgs(ContactFields, IdArgs):
    name: Optional[str] = Field(default=None, description="Contact name")


class ListAccountsArgs(TenantArgs):
    where: Optional[str] = Field(default=None, description="Xero filter expression")
    order: Optional[str] = Field(default=None, description="Sort order")


class CreatePaymentArgs(IdArgs):
    account_code: str = Field(min_length=1, description="Code of the paying account")
    amount: float = Field(ge=0.01, description="Payment amount")
    date: Optional[str] = Field(default=None, description="Payment date (default today)")
    reference: Optional[str] = Field(default=None, description="Payment reference")
    currency_rate: Optional[float] = Field(default=None, gt=0, description="Exchange rate")


class ProfitAndLossArgs(TenantArgs):
    from_date: Optional[str] = Field(default=None, description="Start date (YYYY-MM-DD)")
    to_date: Optional[str] = Field(default=None, description="End date (YYYY-MM-DD)")
    periods: Optional[int] = Field(default=None, ge=1, description="Number of periods to compare")
    timeframe: Optional[Timeframe] = Field(default=None, description="MONTH, QUARTER or YEAR")


class BalanceSheetArgs(TenantArgs):
    date: Optional[str] = Field(default=None, description="Report date (YYYY-MM-DD)")
    periods: Optional[int] = Field(default=None, ge=1, description="Number of periods to compare")
    timeframe: Optional[Timeframe] = Field(default=None, description="MONTH, QUARTER or YEAR")


class TrialBalanceArgs(TenantArgs):
    date: Optional[str] = Field(default=None, description="Report date (YYYY-MM-DD)")
    payments_only: Optional[bool] = Field(default=None, description="Cash transactions only")


class AgedReportArgs(TenantArgs):
    id: Optional[str] = Field(default=None, description="Contact ID")
    date: Optional[str] = Field(default=None, description="Report date (YYYY-MM-DD)")
    from_date: Optional[str] = Field(default=None, description="Start date (YYYY-MM-DD)")
    to_date: Optional[str] = Field(default=None, description="End date (YYYY-MM-DD)")


class NoArgs(CommandArgs):
    pass


class CacheKeyArgs(CommandArgs):
    key: str = Field(min_length=1, description="Cache key to invalidate")


# ==================== Tools / connections ====================


def list_tools() -> list[dict[str, str]]:
    return [{"name": c.name, "description": c.description} for c in COMMANDS.values()]


@command("list-tools", NoArgs, "List available commands")
async def _list_tools(client: XeroClient, args: NoArgs, bypass_cache: bool) -> Any:
    return list_tools()


@command("get-connections", NoArgs, "List connected Xero organisations")
async def _get_connections(client: XeroClient, args: NoArgs, bypass_cache: bool) -> Any:
    return await client.get_connections()


# ==================== Invoices ====================


@command("list-invoices", ListArgs, "List invoices")
async def _list_invoices(client: XeroClient, args: ListArgs, bypass_cache: bool) -> Any:
    return await client.list_invoices(
        page=args.page, where=args.where, order=args.order, tenant_id=args.tenant_id
    )


@command("get-invoice", IdArgs, "Get an invoice by ID")
async def _get_invoice(client: XeroClient, args: IdArgs, bypass_cache: bool) -> Any:
    return await client.get_invoice(args.id, tenant_id=args.tenant_id)


@command("create-invoice", CreateInvoiceArgs, "Create a draft invoice")
async def _create_invoice(client: XeroClient, args: CreateInvoiceArgs, bypass_cache: bool) -> Any:
    line_item = LineItemInput(
        description=args.description,
        quantity=args.quantity,
        unit_amount=args.amount,
        account_code=args.account_code,
    )
    return await client.create_invoice(
        contact_name=args.contact,
        line_items=[line_item],
        type=args.type,
        due_date=args.due_date,
        reference=args.reference,
        tenant_id=args.tenant_id,
    )


@command("update-invoice", UpdateInvoiceArgs, "Update an invoice's status, reference or due date")
async def _update_invoice(client: XeroClient, args: UpdateInvoiceArgs, bypass_cache: bool) -> Any:
    return await client.update_invoice(
        args.id,
        status=args.status,
        reference=args.reference,
        due_date=args.due_date,
        tenant_id=args.tenant_id,
    )


# ==================== Contacts ====================


@command("list-contacts", ListArgs, "List contacts (cached)")
async def _list_contacts(client: XeroClient, args: ListArgs, bypass_cache: bool) -> Any:
    return await client.list_contacts(
        page=args.page,
        where=args.where,
        order=args.order,
        tenant_id=args.tenant_id,
        bypass_cache=bypass_cache,
    )


@command("get-contact", IdArgs, "Get a contact by ID")
async def _get_contact(client: XeroClient, args: IdArgs, bypass_cache: bool) -> Any:
    return await client.get_contact(args.id, tenant_id=args.tenant_id)


@command("create-contact", CreateContactArgs, "Create a contact")
async def _create_contact(client: XeroClient, args: CreateContactArgs, bypass_cache: bool) -> Any:
    return await client.create_contact(**args.model_dump())


@command("update-contact", UpdateContactArgs, "Update a contact")
async def _update_contact(client: XeroClient, args: UpdateContactArgs, bypass_cache: bool) -> Any:
    fields = args.model_dump(exclude={"id"})
    return await client.update_contact(args.id, **fields)


# ==================== Accounts / payments ====================


@command("list-accounts", ListAccountsArgs, "List the chart of accounts (cached)")
async def _list_accounts(client: XeroClient, args: ListAccountsArgs, bypass_cache: bool) -> Any:
    return await client.list_accounts(
        where=args.where, order=args.order, tenant_id=args.tenant_id, bypass_cache=bypass_cache
    )


@command("list-payments", ListArgs, "List payments")
async def _list_payments(client: XeroClient, args: ListArgs, bypass_cache: bool) -> Any:
    return await client.list_payments(
        page=args.page, where=args.where, order=args.order, tenant_id=args.tenant_id
    )


@command("create-payment", CreatePaymentArgs, "Record a payment against an invoice")
async def _create_payment(client: XeroClient, args: CreatePaymentArgs, bypass_cache: bool) -> Any:
    return await client.create_payment(
        invoice_id=args.id,
        account_code=args.account_code,
        amount=args.amount,
        date=args.date,
        reference=args.reference,
        currency_rate=args.currency_rate,
        tenant_id=args.tenant_id,
    )


# ==================== Reports ====================


@command("get-profit-and-loss", ProfitAndLossArgs, "Profit and loss report")
async def _get_profit_and_loss(client: XeroClient, args: ProfitAndLossArgs, bypass_cache: bool) -> Any:
    return await client.get_profit_and_loss(**args.model_dump())


@command("get-balance-sheet", BalanceSheetArgs, "Balance sheet report")
async def _get_balance_sheet(client: XeroClient, args: BalanceSheetArgs, bypass_cache: bool) -> Any:
    return await client.get_balance_sheet(**args.model_dump())


@command("get-trial-balance", TrialBalanceArgs, "Trial balance report")
async def _get_trial_balance(client: XeroClient, args: TrialBalanceArgs, bypass_cache: bool) -> Any:
    return await client.get_trial_balance(**args.model_dump())


@command("get-aged-receivables", AgedReportArgs, "Aged receivables by contact")
async def _get_aged_receivables(client: XeroClient, args: AgedReportArgs, bypass_cache: bool) -> Any:
    return await client.get_aged_receivables(
        contact_id=args.id,
        date=args.date,
        from_date=args.from_date,
        to_date=args.to_date,
        tenant_id=args.tenant_id,
    )


@command("get-aged-payables", AgedReportArgs, "Aged payables by contact")
async def _get_aged_payables(client: XeroClient, args: AgedReportArgs, bypass_cache: bool) -> Any:
    return await client.get_aged_payables(
        contact_id=args.id,
        date=args.date,
        from_date=args.from_date,
        to_date=args.to_date,
        tenant_id=args.tenant_id,
    )


# ==================== Reference data ====================


@command("get-organisation", TenantArgs, "Organisation details (cached)")
async def _get_organisation(client: XeroClient, args: TenantArgs, bypass_cache: bool) -> Any:
    return await client.get_organisation(tenant_id=args.tenant_id, bypass_cache=bypass_cache)


@command("list-items", TenantArgs, "List inventory items")
async def _list_items(client: XeroClient, args: TenantArgs, bypass_cache: bool) -> Any:
    return await client.list_items(tenant_id=args.tenant_id)


@command("list-tax-rates", TenantArgs, "List tax rates (cached)")
async def _list_tax_rates(client: XeroClient, args: TenantArgs, bypass_cache: bool) -> Any:
    return await client.list_tax_rates(tenant_id=args.tenant_id, bypass_cache=bypass_cache)


@command("list-contact-groups", TenantArgs, "List contact groups")
async def _list_contact_groups(client: XeroClient, args: TenantArgs, bypass_cache: bool) -> Any:
    return await client.list_contact_groups(tenant_id=args.tenant_id)


# ==================== Other transactions ====================


@command("list-credit-notes", ListArgs, "List credit notes")
async def _list_credit_notes(client: XeroClient, args: ListArgs, bypass_cache: bool) -> Any:
    return await client.list_credit_notes(**args.model_dump())


@command("list-bank-transactions", ListArgs, "List bank transactions")
async def _list_bank_transactions(client: XeroClient, args: ListArgs, bypass_cache: bool) -> Any:
    return await client.list_bank_transactions(**args.model_dump())


@command("list-quotes", ListArgs, "List quotes")
async def _list_quotes(client: XeroClient, args: ListArgs, bypass_cache: bool) -> Any:
    return await client.list_quotes(**args.model_dump())


@command("get-quote", IdArgs, "Get a quote by ID")
async def _get_quote(client: XeroClient, args: IdArgs, bypass_cache: bool) -> Any:
    return await client.get_quote(args.id, tenant_id=args.tenant_id)


@command("list-overpayments", ListArgs, "List overpayments")
async def _list_overpayments(client: XeroClient, args: ListArgs, bypass_cache: bool) -> Any:
    return await client.list_overpayments(**args.model_dump())


@command("list-prepayments", ListArgs, "List prepayments")
async def _list_prepayments(client: XeroClient, args: ListArgs, bypass_cache: bool) -> Any:
    return await client.list_prepayments(**args.model_dump())


# ==================== Cache ====================


@command("clear-cache", NoArgs, "Clear cached data and the remembered tenant ID")
async def _clear_cache(client: XeroClient, args: NoArgs, bypass_cache: bool) -> Any:
    return {"cleared": await client.clear_cache()}


@command("cache-stats", NoArgs, "Show cache statistics")
async def _cache_stats(client: XeroClient, args: NoArgs, bypass_cache: bool) -> Any:
    return stats_payload(client, await client.get_cache_stats())


@command("cache-invalidate", CacheKeyArgs, "Invalidate a single cache key")
async def _cache_invalidate(client: XeroClient, args: CacheKeyArgs, bypass_cache: bool) -> Any:
    return {"key": args.key, "removed": await client.invalidate_cache_key(args.key)}


# ==================== Execution ====================


def stats_payload(client: XeroClient, stats: CacheStats) -> dict[str, Any]:
    return {
        "namespace": client.cache.namespace,
        "enabled": client.cache.enabled,
        "hits": stats.hits,
        "misses": stats.misses,
        "entry_count": stats.entry_count,
        "hit_rate": round(stats.hit_rate, 1),
    }


def get_command(name: str) -> Command:
    try:
        return COMMANDS[name]
    except KeyError:
        raise UnknownCommandError(name) from None


def parse_args(name: str, raw_args: Optional[dict[str, Any]] = None) -> BaseModel:
    """Validate raw arguments for a command.

    Raises:
        UnknownCommandError: If no such command exists
        ValidationError: If the arguments do not fit the command
    """
    return get_command(name).args_model.model_validate(raw_args or {})


async def execute_command(
    client: XeroClient,
    name: str,
    raw_args: Optional[dict[str, Any]] = None,
    bypass_cache: bool = False,
) -> Any:
    """Validate arguments, run the command and serialize its result."""
    args = parse_args(name, raw_args)
    logger.debug("Executing command", command=name, bypass_cache=bypass_cache)
    result = await COMMANDS[name].run(client, args, bypass_cache)
    return serialize_result(result)


def serialize_result(result: Any) -> Any:
    """Convert models (and lists of them) to JSON-ready data."""
    if isinstance(result, list):
        return [serialize_result(item) for item in result]
    if hasattr(result, "to_api"):
        return result.to_api()
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return result


def format_validation_error(error: ValidationError) -> str:
    """One line per failing field: 'field: message'."""
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'arguments'}: {err['msg']}"
        for err in error.errors()
    )
