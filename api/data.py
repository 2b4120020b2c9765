"""GET /api/data: unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.exceptions import RecordNotFoundError
from utils.timezone import parse_iso


VALID_TYPES = {"quote", "chain", "invoice", "credit_note", "overdue", "vat_report"}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    quote_svc = services["quote"]
    conversion_svc = services["conversion"]
    invoice_svc = services["invoice"]
    credit_note_svc = services["credit_note"]
    tax_report_svc = services["tax_report"]

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        client_id: str | None = Query(None),
        quote_id: str | None = Query(None),
        include: str | None = Query(None),
        start: str | None = Query(None),
        end: str | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        ctx = request.state.company
        includes = set(include.split(",")) if include else set()

        if type == "quote":
            data = _handle_quote(quote_svc, conversion_svc, invoice_svc, ctx, id, client_id, includes)
        elif type == "chain":
            data = _handle_chain(quote_svc, ctx, id)
        elif type == "invoice":
            data = _handle_invoice(invoice_svc, ctx, id, client_id, quote_id, includes, limit)
        elif type == "credit_note":
            data = _handle_credit_note(credit_note_svc, ctx, id, client_id, includes)
        elif type == "overdue":
            data = [i.model_dump(mode="json") for i in invoice_svc.list_overdue(ctx)][:limit]
        else:
            data = _handle_vat_report(tax_report_svc, ctx, start, end)

        return success_response(data, request.state.request_id).model_dump(mode="json")

    return router


def _handle_quote(quote_svc, conversion_svc, invoice_svc, ctx, id, client_id, includes):
    if id:
        quote = quote_svc.get_effective(ctx, UUID(id))

        data = quote.model_dump(mode="json")
        if "invoices" in includes:
            invoices = invoice_svc.list_for_quote(ctx, quote.id)
            data["invoices"] = [i.model_dump(mode="json") for i in invoices]
        if "remaining" in includes:
            data["remaining_convertible"] = str(conversion_svc.remaining_convertible(ctx, quote.id))
        return data

    if client_id:
        quotes = quote_svc.list_for_client(ctx, UUID(client_id))
        return [q.model_dump(mode="json") for q in quotes]

    raise ValueError("'quote' type requires 'id' or 'client_id' parameter")


def _handle_chain(quote_svc, ctx, id):
    if not id:
        raise ValueError("'chain' type requires 'id' parameter")
    return [q.model_dump(mode="json") for q in quote_svc.list_chain(ctx, UUID(id))]


def _handle_invoice(invoice_svc, ctx, id, client_id, quote_id, includes, limit):
    if id:
        invoice = invoice_svc.get_by_id(ctx, UUID(id))
        if invoice is None:
            raise RecordNotFoundError("invoice", UUID(id))

        data = invoice.model_dump(mode="json")
        if "payments" in includes:
            payments = invoice_svc.list_payments(ctx, invoice.id)
            data["payments"] = [p.model_dump(mode="json") for p in payments]
        if "summary" in includes:
            data["summary"] = invoice_svc.payment_summary(ctx, invoice.id).model_dump(mode="json")
        return data

    if quote_id:
        invoices = invoice_svc.list_for_quote(ctx, UUID(quote_id))
        return [i.model_dump(mode="json") for i in invoices]

    if client_id:
        invoices = invoice_svc.list_for_client(ctx, UUID(client_id), limit)
        return [i.model_dump(mode="json") for i in invoices]

    raise ValueError("'invoice' type requires 'id', 'quote_id' or 'client_id' parameter")


def _handle_credit_note(credit_note_svc, ctx, id, client_id, includes):
    if id:
        credit_note = credit_note_svc.get_by_id(ctx, UUID(id))
        if credit_note is None:
            raise RecordNotFoundError("credit_note", UUID(id))

        data = credit_note.model_dump(mode="json")
        if "applications" in includes:
            applications = credit_note_svc.list_applications(ctx, credit_note.id)
            data["applications"] = [a.model_dump(mode="json") for a in applications]
        return data

    if client_id:
        credit_notes = credit_note_svc.list_for_client(ctx, UUID(client_id))
        return [c.model_dump(mode="json") for c in credit_notes]

    raise ValueError("'credit_note' type requires 'id' or 'client_id' parameter")


def _handle_vat_report(tax_report_svc, ctx, start, end):
    if not start or not end:
        raise ValueError("'vat_report' type requires 'start' and 'end' parameters")
    report = tax_report_svc.vat_report(ctx, parse_iso(start), parse_iso(end))
    return report.model_dump(mode="json")
