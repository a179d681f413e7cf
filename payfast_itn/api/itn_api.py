"""
ITN Receiver API.

Provides the endpoint Payfast posts Instant Transaction Notifications to,
plus a health check.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from aiohttp import web

from ..config import config
from ..models.notification import Notification, RequestContext
from ..models.validation import (
    FailureReason,
    ValidationResult,
    ValidationStage,
)
from ..services.intake import ITN_METHOD, NotificationIntake
from ..services.itn_validator import ITNValidator

logger = logging.getLogger(__name__)

# Looks up the amount the merchant expects for a notification
AmountLookup = Callable[[Notification], Awaitable[Optional[float]]]
PaymentCallback = Callable[[Notification], Awaitable[None]]
FailureCallback = Callable[[Optional[Notification], ValidationResult], Awaitable[None]]


async def no_expected_amount(notification: Notification) -> Optional[float]:
    """Default lookup: no orders are known, so nothing validates."""
    logger.warning(
        f"No amount lookup configured; cannot validate ITN {notification.short_id()}"
    )
    return None


class ITNAPI:
    """
    REST API receiving Payfast ITNs.

    Endpoints:
    - POST {itn_path} - Receive an ITN (acknowledged with 200 immediately)
    - GET /api/health - Health check

    Validated notifications are passed to callbacks registered with
    on_payment(); rejected ones to callbacks registered with on_failure().
    """

    def __init__(
        self,
        validator: ITNValidator,
        amount_lookup: Optional[AmountLookup] = None,
        itn_path: Optional[str] = None
    ):
        """
        Initialize the API.

        Args:
            validator: ITN validator for the merchant account
            amount_lookup: Coroutine returning the expected amount
            itn_path: Path the ITN endpoint is served on
        """
        self.validator = validator
        self.amount_lookup = amount_lookup or no_expected_amount
        self.itn_path = itn_path or config.api.itn_path
        self._payment_callbacks: List[PaymentCallback] = []
        self._failure_callbacks: List[FailureCallback] = []

    def on_payment(self, callback: PaymentCallback) -> None:
        """Register a callback for validated notifications."""
        self._payment_callbacks.append(callback)

    def on_failure(self, callback: FailureCallback) -> None:
        """Register a callback for notifications that did not validate."""
        self._failure_callbacks.append(callback)

    def setup_routes(self, app: web.Application) -> None:
        """
        Set up API routes.

        Args:
            app: aiohttp web application
        """
        app.router.add_route('*', self.itn_path, self.handle_itn)
        app.router.add_get('/api/health', self.health_check)

    async def handle_itn(self, request: web.Request) -> web.StreamResponse:
        """
        Receive an ITN.

        Payfast treats a slow or missing response as a failed delivery, so
        the 200 is sent before the notification is validated.
        """
        context = await NotificationIntake.context_from_request(request)

        response = web.StreamResponse(status=200)
        await response.prepare(request)
        await response.write_eof()

        try:
            await self.process(context)
        except Exception as e:
            # Already acknowledged; nothing can be reported to Payfast
            logger.error(f"Error processing ITN: {e}", exc_info=True)

        return response

    async def process(self, context: RequestContext) -> ValidationResult:
        """
        Intake and validate one request, then notify callbacks.

        Args:
            context: Request context built from the incoming request

        Returns:
            The validation result
        """
        notification = NotificationIntake.from_context(context)
        if notification is None:
            if (context.method or '').upper() != ITN_METHOD:
                reason = FailureReason.METHOD_NOT_ALLOWED
            elif context.malformed:
                reason = FailureReason.MALFORMED_BODY
            else:
                reason = FailureReason.MISSING_SIGNATURE
            result = self._rejected(reason)
            await self._dispatch_failure(None, result)
            return result

        logger.info(f"Received ITN {notification.short_id()} ({notification.status})")

        expected_amount = await self.amount_lookup(notification)
        if expected_amount is None:
            result = self._rejected(FailureReason.MISSING_AMOUNT, "No expected amount")
            await self._dispatch_failure(notification, result)
            return result

        result = await self.validator.validate(notification, expected_amount)

        if result:
            await self._dispatch_payment(notification)
        else:
            await self._dispatch_failure(notification, result)

        return result

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "healthy",
            "service": config.service.name,
            "sandbox": self.validator.credentials.sandbox
        })

    @staticmethod
    def _rejected(reason: FailureReason, detail: str = "") -> ValidationResult:
        stage = ValidationStage.AMOUNT if reason == FailureReason.MISSING_AMOUNT else None
        return ValidationResult(
            valid=False,
            stage=stage,
            reason=reason,
            detail=detail or reason.value
        )

    async def _dispatch_payment(self, notification: Notification) -> None:
        for callback in self._payment_callbacks:
            try:
                await callback(notification)
            except Exception as e:
                logger.error(
                    f"Error in payment callback for ITN {notification.short_id()}: {e}",
                    exc_info=True
                )

    async def _dispatch_failure(
        self,
        notification: Optional[Notification],
        result: ValidationResult
    ) -> None:
        for callback in self._failure_callbacks:
            try:
                await callback(notification, result)
            except Exception as e:
                logger.error(f"Error in failure callback: {e}", exc_info=True)


def create_app(
    validator: ITNValidator,
    amount_lookup: Optional[AmountLookup] = None,
    itn_path: Optional[str] = None,
    client_max_size: int = 1024 ** 2
) -> web.Application:
    """
    Create and configure the aiohttp web application.

    Args:
        validator: ITN validator
        amount_lookup: Coroutine returning the expected amount
        itn_path: Path of the ITN endpoint
        client_max_size: Largest request body accepted, in bytes

    Returns:
        Configured aiohttp Application (the ITNAPI is stored under 'itn_api')
    """
    app = web.Application(client_max_size=client_max_size)

    api = ITNAPI(
        validator=validator,
        amount_lookup=amount_lookup,
        itn_path=itn_path
    )

    api.setup_routes(app)
    app['itn_api'] = api

    # Error handling middleware
    @web.middleware
    async def error_middleware(request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"Unhandled error: {e}", exc_info=True)
            return web.json_response(
                {"error": "Internal server error"},
                status=500
            )

    app.middlewares.append(error_middleware)

    return app
