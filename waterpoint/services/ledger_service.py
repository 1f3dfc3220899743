"""Waterpoint Gateway - Transaction ledger.

Drives both payment variants through one lifecycle:

    pending -> processing -> completed / failed / cancelled / timeout / expired

Every transition is a conditional UPDATE on ``(reference, status IN expected)``.
Provider events can arrive more than once and race with status polls and the
sweeper; whoever loses the conditional update does nothing.
"""

import json
import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from waterpoint.core.config import Settings
from waterpoint.core.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    SignatureError,
    UpstreamError,
    ValidationError,
    WaterpointError,
)
from waterpoint.db.engine import SessionFactory, session_scope
from waterpoint.gateways.base import CallbackEvent, GatewayError, PaymentGateway
from waterpoint.models.transaction import (
    OPEN_STATUSES,
    UPDATABLE_FIELDS,
    VARIANT_MODELS,
    CheckoutTransaction,
    MpesaTransaction,
    PaymentVariant,
    TransactionModel,
    TransactionReference,
    TransactionStatus,
    variant_of,
)
from waterpoint.services.credential_service import CredentialIssuer
from waterpoint.services.lookup import find_transaction
from waterpoint.services.notification_service import NotificationDispatcher
from waterpoint.services.pricing_service import PricePreview, PricingEngine
from waterpoint.utils.helpers import utcnow
from waterpoint.utils.phone import InvalidPhoneNumber, normalize_phone_number
from waterpoint.utils.reference import generate_reference

logger = logging.getLogger(__name__)

# Column the provider handle is stored in, per variant
HANDLE_COLUMNS: dict[PaymentVariant, str] = {
    PaymentVariant.MOBILE_PUSH: "checkout_request_id",
    PaymentVariant.HOSTED_CHECKOUT: "reference",
}

# Status an unconfirmed transaction ends in when it ages out
AGE_LIMIT_STATUS: dict[PaymentVariant, TransactionStatus] = {
    PaymentVariant.MOBILE_PUSH: TransactionStatus.TIMEOUT,
    PaymentVariant.HOSTED_CHECKOUT: TransactionStatus.EXPIRED,
}


def validate_email(email: str | None) -> str:
    value = (email or "").strip()
    local, _, domain = value.partition("@")
    if not local or "." not in domain or " " in value:
        raise ValidationError("A valid email address is required")
    return value


class TransactionLedger:
    """Persistent payment state machine across both variants.

    Usage:
        ledger = TransactionLedger(settings, session_factory, gateways, pricing, issuer)
        result = await ledger.initiate(PaymentVariant.MOBILE_PUSH, 50, "0712345678")
    """

    MAX_REFERENCE_ATTEMPTS = 3

    def __init__(
        self,
        settings: Settings,
        session_factory: SessionFactory,
        gateways: dict[PaymentVariant, PaymentGateway],
        pricing: PricingEngine,
        issuer: CredentialIssuer,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._gateways = gateways
        self._pricing = pricing
        self._issuer = issuer
        self._notifier = notifier
        self.mpesa_timeout = timedelta(minutes=settings.mpesa_timeout_minutes)
        self.checkout_expiry = timedelta(hours=settings.paystack_expiry_hours)

    def _gateway(self, variant: PaymentVariant) -> PaymentGateway:
        gateway = self._gateways.get(variant)
        if gateway is None:
            raise ValidationError(f"Payment variant {variant.value} is not enabled")
        return gateway

    # ============ Initiation ============

    async def initiate(
        self,
        variant: PaymentVariant,
        amount: Any,
        destination: str,
        *,
        phone_number: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create a transaction and start the payment with the provider.

        Args:
            variant: Payment network
            amount: Requested amount; the charged amount is the priced one
            destination: Phone number (mobile_push) or e-mail (hosted_checkout)
            phone_number: Optional SMS number for hosted_checkout
            description: Text shown to the payer
            metadata: Caller data stored with the transaction

        Returns:
            Serialized transaction plus provider handle and prompt/redirect

        Raises:
            ValidationError: Bad destination or amount
            OutOfRangeError: Amount outside bounds
            UpstreamError: Provider rejected or timed out (transaction marked failed)
        """
        gateway = self._gateway(variant)
        try:
            if variant == PaymentVariant.MOBILE_PUSH:
                destination = normalize_phone_number(destination)
            else:
                destination = validate_email(destination)
                if phone_number:
                    phone_number = normalize_phone_number(phone_number)
        except InvalidPhoneNumber as e:
            raise ValidationError(str(e)) from None

        preview = self._pricing.preview(amount)
        description = description or f"Water Purchase {preview.liters}L"
        reference = await self._create(
            variant, preview, destination, phone_number, description, metadata or {}
        )
        logger.info(
            f"Payment initiated: reference={reference} variant={variant.value} "
            f"amount={preview.amount} liters={preview.liters}"
        )

        try:
            result = await gateway.initiate(
                preview.amount, reference, destination, description, metadata
            )
        except GatewayError as e:
            # No automatic retry; a second push could charge the customer twice
            await self._transition(
                variant,
                reference,
                (TransactionStatus.PENDING,),
                TransactionStatus.FAILED,
                {"result_desc": e.message[:500], "gateway_response": e.message[:255]},
            )
            logger.error(f"Payment initiation failed: reference={reference} error={e.message}")
            raise UpstreamError(e.message, {"transaction_reference": reference}) from e

        await self._transition(
            variant,
            reference,
            (TransactionStatus.PENDING,),
            TransactionStatus.PROCESSING,
            result.correlation,
        )
        transaction = await self._load(variant, reference)
        data = self.serialize(transaction)
        data.update(
            {
                "provider_handle": result.provider_handle,
                "prompt": result.prompt,
                "redirect_url": result.redirect_url,
                "requested_amount": preview.requested_amount,
                "difference": preview.difference,
            }
        )
        return data

    async def _create(
        self,
        variant: PaymentVariant,
        preview: PricePreview,
        destination: str,
        phone_number: str | None,
        description: str,
        metadata: dict[str, Any],
    ) -> str:
        """Insert the registry row and a pending variant row atomically."""
        details = {
            "requested_amount": str(preview.requested_amount),
            "price_per_liter": str(preview.price_per_liter),
            "difference": str(preview.difference),
            "description": description,
            "metadata": metadata,
        }
        for attempt in range(1, self.MAX_REFERENCE_ATTEMPTS + 1):
            reference = generate_reference()
            now = utcnow()
            common = {
                "reference": reference,
                "amount": preview.amount,
                "liters": preview.liters,
                "currency": preview.currency,
                "status": TransactionStatus.PENDING,
                "details": details,
                "created_at": now,
                "updated_at": now,
            }
            if variant == PaymentVariant.MOBILE_PUSH:
                transaction: TransactionModel = MpesaTransaction(
                    phone_number=destination, **common
                )
            else:
                transaction = CheckoutTransaction(
                    email=destination,
                    phone_number=phone_number,
                    expires_at=now + self.checkout_expiry,
                    **common,
                )
            try:
                async with session_scope(self._session_factory) as session:
                    session.add(TransactionReference(reference=reference, variant=variant))
                    session.add(transaction)
            except IntegrityError:
                logger.warning(f"Reference collision on {reference}, retry {attempt}")
                continue
            return reference

        raise ConflictError(
            "Could not allocate a unique transaction reference",
            code=ErrorCode.DUPLICATE_REFERENCE,
        )

    # ============ Transitions ============

    async def _transition(
        self,
        variant: PaymentVariant,
        reference: str,
        expected: tuple[TransactionStatus, ...],
        target: TransactionStatus,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Conditionally move a transaction to ``target``.

        Only allow-listed correlation columns from ``fields`` are written.

        Returns:
            True if this call made the transition
        """
        model = VARIANT_MODELS[variant]
        allowed = UPDATABLE_FIELDS[variant]
        values = {
            key: value
            for key, value in (fields or {}).items()
            if key in allowed and value is not None
        }
        values["status"] = target
        values["updated_at"] = utcnow()

        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(model)
                .where(model.reference == reference, model.status.in_(expected))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1

        if changed:
            logger.info(f"Transaction {reference} -> {target.value}")
            if target == TransactionStatus.COMPLETED:
                await self._on_completed(variant, reference)
        return changed

    async def _on_completed(self, variant: PaymentVariant, reference: str) -> None:
        """Issue the credential and send it; failures never reach the provider."""
        try:
            issued = await self._issuer.issue_once_for(reference)
        except WaterpointError as e:
            logger.error(f"Credential issuance failed for {reference}: {e.message}")
            return
        except Exception:
            logger.exception(f"Credential issuance crashed for {reference}")
            return
        if issued is None:
            return

        transaction = await self._load(variant, reference)
        destination = transaction.phone_number if transaction else None
        if destination and self._notifier is not None:
            self._notifier.dispatch(
                destination, issued.code, issued.liters, issued.expires_in_minutes
            )
        elif not destination:
            logger.info(f"No phone number for {reference}; code must be fetched via /otp/generate")

    # ============ Provider events ============

    async def handle_callback(
        self,
        variant: PaymentVariant,
        raw_body: bytes,
        signature: str | None = None,
    ) -> dict[str, Any]:
        """Authenticate, parse and apply a provider callback or webhook.

        Raises:
            SignatureError: Signature missing or wrong (nothing is written)
            ValidationError: Body is not a recognisable provider payload
        """
        gateway = self._gateway(variant)
        if gateway.signed_callbacks and not gateway.verify_signature(raw_body, signature):
            logger.warning(f"Rejected {variant.value} webhook with invalid signature")
            raise SignatureError("Invalid webhook signature")

        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError:
            raise ValidationError("Callback body is not valid JSON") from None
        if not isinstance(payload, dict):
            raise ValidationError("Callback body must be a JSON object")
        try:
            event = gateway.parse_callback(payload)
        except GatewayError as e:
            raise ValidationError(e.message) from e
        return await self.apply_event(variant, event)

    async def apply_event(self, variant: PaymentVariant, event: CallbackEvent) -> dict[str, Any]:
        """Apply a parsed provider event. Replays are no-ops."""
        if event.status is None:
            logger.info(
                f"Ignoring {variant.value} event {event.event_type or event.result_code} "
                f"for {event.reference or event.provider_handle}"
            )
            return {"processed": False, "reason": "event ignored"}

        model = VARIANT_MODELS[variant]
        if event.reference:
            column = model.reference
            key = event.reference
        else:
            column = getattr(model, HANDLE_COLUMNS[variant])
            key = event.provider_handle
        async with session_scope(self._session_factory) as session:
            result = await session.execute(select(model).where(column == key))
            transaction = result.scalar_one_or_none()

        if transaction is None:
            logger.warning(f"{variant.value} event for unknown transaction {key}")
            return {"processed": False, "reason": "unknown transaction"}

        changed = await self._transition(
            variant, transaction.reference, OPEN_STATUSES, event.status, event.correlation
        )
        if not changed:
            logger.info(
                f"Duplicate or late {variant.value} event for {transaction.reference} "
                f"(current status {transaction.status.value})"
            )
        return {
            "processed": changed,
            "transaction_reference": transaction.reference,
            "status": event.status.value,
        }

    async def verify_payment(self, reference: str) -> dict[str, Any]:
        """Poll the provider and apply its answer like a callback.

        Raises:
            NotFoundError: TRANSACTION_NOT_FOUND
            UpstreamError: Provider could not be queried
        """
        transaction = await self._find(reference)
        variant = variant_of(transaction)
        if transaction.status.is_terminal:
            return self.serialize(transaction)

        handle = getattr(transaction, HANDLE_COLUMNS[variant])
        if not handle:
            return await self.get_status(reference)

        try:
            result = await self._gateway(variant).verify(handle)
        except GatewayError as e:
            logger.error(f"Payment verification failed: reference={reference} error={e.message}")
            raise UpstreamError(e.message, {"transaction_reference": reference}) from e

        if result.status is not None:
            await self._transition(
                variant, reference, OPEN_STATUSES, result.status, result.correlation
            )
        return await self.get_status(reference)

    # ============ Reads ============

    async def _load(self, variant: PaymentVariant, reference: str) -> TransactionModel | None:
        model = VARIANT_MODELS[variant]
        async with session_scope(self._session_factory) as session:
            result = await session.execute(select(model).where(model.reference == reference))
            return result.scalar_one_or_none()

    async def _find(self, reference: str) -> TransactionModel:
        async with session_scope(self._session_factory) as session:
            transaction = await find_transaction(session, reference)
        if transaction is None:
            raise NotFoundError(
                f"Transaction {reference} not found",
                code=ErrorCode.TRANSACTION_NOT_FOUND,
            )
        return transaction

    def is_past_age_limit(self, transaction: TransactionModel) -> bool:
        now = utcnow()
        if isinstance(transaction, MpesaTransaction):
            return transaction.created_at <= now - self.mpesa_timeout
        return transaction.expires_at <= now

    async def get_status(self, reference: str) -> dict[str, Any]:
        """Unified view; ages out stale open transactions on read.

        Raises:
            NotFoundError: TRANSACTION_NOT_FOUND
        """
        transaction = await self._find(reference)
        variant = variant_of(transaction)
        if transaction.status in OPEN_STATUSES and self.is_past_age_limit(transaction):
            await self._transition(
                variant, reference, OPEN_STATUSES, AGE_LIMIT_STATUS[variant]
            )
            transaction = await self._load(variant, reference)
        return self.serialize(transaction)

    @staticmethod
    def serialize(transaction: TransactionModel) -> dict[str, Any]:
        variant = variant_of(transaction)
        data: dict[str, Any] = {
            "transaction_reference": transaction.reference,
            "variant": variant.value,
            "status": transaction.status.value,
            "amount": transaction.amount,
            "liters": transaction.liters,
            "currency": transaction.currency,
            "created_at": transaction.created_at,
            "updated_at": transaction.updated_at,
        }
        if isinstance(transaction, MpesaTransaction):
            data.update(
                {
                    "phone_number": transaction.phone_number,
                    "checkout_request_id": transaction.checkout_request_id,
                    "receipt_number": transaction.receipt_number,
                    "result_code": transaction.result_code,
                    "result_desc": transaction.result_desc,
                }
            )
        else:
            data.update(
                {
                    "email": transaction.email,
                    "phone_number": transaction.phone_number,
                    "authorization_url": transaction.authorization_url,
                    "channel": transaction.channel,
                    "paid_at": transaction.paid_at,
                    "expires_at": transaction.expires_at,
                }
            )
        return data
