"""POST /api/actions: unified mutation endpoint."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from api.base import success_response
from core.conversion import ConversionMode
from core.exceptions import RecordNotFoundError
from core.models import (
    CreditNoteCreate,
    InvoiceCreate,
    PaymentCreate,
    PaymentStatus,
    QuoteCreate,
    QuoteUpdate,
)
from utils.company_context import CompanyContext


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


class ConvertData(BaseModel):
    quote_id: UUID
    mode: ConversionMode = ConversionMode.FULL
    deposit_amount: Decimal | None = None
    deposit_percentage: Decimal | None = None
    issued_at: datetime | None = None
    due_at: datetime | None = None


class BalanceInvoiceData(BaseModel):
    deposit_invoice_id: UUID
    issued_at: datetime | None = None
    due_at: datetime | None = None


class ReminderData(BaseModel):
    id: UUID
    enabled: bool
    days_before_expiry: int | None = Field(None, ge=1, le=30)


class ApplyCreditData(BaseModel):
    id: UUID
    invoice_id: UUID
    amount: Decimal = Field(..., gt=0)


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "quote": QuoteHandler(services["quote"]),
        "conversion": ConversionHandler(services["conversion"]),
        "invoice": InvoiceHandler(services["invoice"]),
        "payment": PaymentHandler(services["invoice"]),
        "credit_note": CreditNoteHandler(services["credit_note"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result = method(request.state.company, body.data)
        return success_response(result, request.state.request_id).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class QuoteHandler:
    ALLOWED_ACTIONS = {
        "create", "update", "revise", "delete",
        "submit", "approve", "reject", "accept", "expire",
        "configure_reminder", "create_version",
    }

    def __init__(self, service):
        self.service = service

    def _handle_create(self, ctx: CompanyContext, data: dict):
        quote = self.service.create(ctx, QuoteCreate(**data))
        return quote.model_dump(mode="json")

    def _handle_update(self, ctx: CompanyContext, data: dict):
        quote_id = UUID(data.pop("id"))
        quote = self.service.update(ctx, quote_id, QuoteUpdate(**data))
        return quote.model_dump(mode="json")

    def _handle_revise(self, ctx: CompanyContext, data: dict):
        quote_id = UUID(data.pop("id"))
        quote = self.service.revise(ctx, quote_id, QuoteUpdate(**data))
        return quote.model_dump(mode="json")

    def _handle_delete(self, ctx: CompanyContext, data: dict):
        quote_id = UUID(data["id"])
        deleted = self.service.delete(ctx, quote_id)
        if not deleted:
            raise RecordNotFoundError("quote", quote_id)
        return {"deleted": True}

    def _handle_submit(self, ctx: CompanyContext, data: dict):
        quote = self.service.submit(ctx, UUID(data["id"]))
        return quote.model_dump(mode="json")

    def _handle_approve(self, ctx: CompanyContext, data: dict):
        quote = self.service.approve(ctx, UUID(data["id"]), notes=data.get("notes"))
        return quote.model_dump(mode="json")

    def _handle_reject(self, ctx: CompanyContext, data: dict):
        quote = self.service.reject(ctx, UUID(data["id"]), reason=data.get("reason"))
        return quote.model_dump(mode="json")

    def _handle_accept(self, ctx: CompanyContext, data: dict):
        quote = self.service.accept(ctx, UUID(data["id"]))
        return quote.model_dump(mode="json")

    def _handle_expire(self, ctx: CompanyContext, data: dict):
        quote = self.service.refresh_expiry(ctx, UUID(data["id"]))
        return quote.model_dump(mode="json")

    def _handle_configure_reminder(self, ctx: CompanyContext, data: dict):
        params = ReminderData(**data)
        quote = self.service.configure_reminder(
            ctx, params.id, params.enabled, params.days_before_expiry,
        )
        return quote.model_dump(mode="json")

    def _handle_create_version(self, ctx: CompanyContext, data: dict):
        quote_id = UUID(data.pop("id"))
        changes = QuoteUpdate(**data) if data else None
        quote = self.service.create_new_version(ctx, quote_id, changes=changes)
        return quote.model_dump(mode="json")


class ConversionHandler:
    ALLOWED_ACTIONS = {"convert", "create_balance_invoice"}

    def __init__(self, service):
        self.service = service

    def _handle_convert(self, ctx: CompanyContext, data: dict):
        params = ConvertData(**data)
        result = self.service.convert(
            ctx,
            params.quote_id,
            mode=params.mode,
            deposit_amount=params.deposit_amount,
            deposit_percentage=params.deposit_percentage,
            issued_at=params.issued_at,
            due_at=params.due_at,
        )
        return result.model_dump(mode="json")

    def _handle_create_balance_invoice(self, ctx: CompanyContext, data: dict):
        params = BalanceInvoiceData(**data)
        result = self.service.create_balance_invoice(
            ctx, params.deposit_invoice_id, issued_at=params.issued_at, due_at=params.due_at,
        )
        return result.model_dump(mode="json")


class InvoiceHandler:
    ALLOWED_ACTIONS = {"create", "send", "cancel", "refresh_status"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, ctx: CompanyContext, data: dict):
        invoice = self.service.create(ctx, InvoiceCreate(**data))
        return invoice.model_dump(mode="json")

    def _handle_send(self, ctx: CompanyContext, data: dict):
        invoice = self.service.send(ctx, UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_cancel(self, ctx: CompanyContext, data: dict):
        invoice = self.service.cancel(ctx, UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_refresh_status(self, ctx: CompanyContext, data: dict):
        invoice = self.service.refresh_status(ctx, UUID(data["id"]))
        return invoice.model_dump(mode="json")


class PaymentHandler:
    ALLOWED_ACTIONS = {"record", "delete", "set_status"}

    def __init__(self, service):
        self.service = service

    def _handle_record(self, ctx: CompanyContext, data: dict):
        payment = self.service.record_payment(ctx, PaymentCreate(**data))
        return payment.model_dump(mode="json")

    def _handle_delete(self, ctx: CompanyContext, data: dict):
        payment_id = UUID(data["id"])
        deleted = self.service.delete_payment(ctx, payment_id)
        if not deleted:
            raise RecordNotFoundError("payment", payment_id)
        return {"deleted": True}

    def _handle_set_status(self, ctx: CompanyContext, data: dict):
        payment = self.service.set_payment_status(ctx, UUID(data["id"]), PaymentStatus(data["status"]))
        return payment.model_dump(mode="json")


class CreditNoteHandler:
    ALLOWED_ACTIONS = {"create", "issue", "apply", "cancel"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, ctx: CompanyContext, data: dict):
        credit_note = self.service.create(ctx, CreditNoteCreate(**data))
        return credit_note.model_dump(mode="json")

    def _handle_issue(self, ctx: CompanyContext, data: dict):
        credit_note = self.service.issue(ctx, UUID(data["id"]))
        return credit_note.model_dump(mode="json")

    def _handle_apply(self, ctx: CompanyContext, data: dict):
        params = ApplyCreditData(**data)
        application = self.service.apply(ctx, params.id, params.invoice_id, params.amount)
        return application.model_dump(mode="json")

    def _handle_cancel(self, ctx: CompanyContext, data: dict):
        credit_note = self.service.cancel(ctx, UUID(data["id"]))
        return credit_note.model_dump(mode="json")
