#!/usr/bin/env python3
"""
Payfast ITN Receiver Service.

Main entry point that runs the ITN receiver:
- ITN endpoint (acknowledge, validate, dispatch)
- Health check endpoint

Usage:
    python -m payfast_itn.main

Environment variables:
    See .env.example for all configuration options.
"""

import asyncio
import importlib
import logging
import os
import signal
import sys
from typing import Optional

from aiohttp import web

from .api.itn_api import AmountLookup, ITNAPI, create_app
from .config import config
from .models.notification import Notification
from .services.confirmation import PayfastConfirmationClient
from .services.itn_validator import ITNValidator
from .services.origin import DnsOriginTrustPolicy


# Configure logging
def setup_logging():
    """Configure logging based on config."""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_level = getattr(logging, config.logging.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if config.logging.file:
        # Ensure log directory exists
        log_dir = os.path.dirname(config.logging.file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(config.logging.file))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )

    # Reduce noise from third-party libraries
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def load_amount_lookup(path: Optional[str]) -> Optional[AmountLookup]:
    """
    Import the amount lookup named by a 'module:function' path.

    Args:
        path: Dotted module path and attribute, or None

    Returns:
        The lookup coroutine function, or None if no path is set

    Raises:
        ValueError: If the path is malformed or does not name a callable
    """
    if not path:
        return None

    module_name, _, attr = path.partition(':')
    if not module_name or not attr:
        raise ValueError(f"Amount lookup must look like 'module:function', got {path!r}")

    lookup = getattr(importlib.import_module(module_name), attr, None)
    if not callable(lookup):
        raise ValueError(f"Amount lookup {path!r} is not callable")

    return lookup


class PayfastITNService:
    """
    Main service orchestrator.

    Coordinates:
    - Origin trust policy (DNS) and confirmation client
    - ITN validator
    - REST API server
    """

    def __init__(self, amount_lookup: Optional[AmountLookup] = None):
        self.amount_lookup = amount_lookup
        self.origin_policy: Optional[DnsOriginTrustPolicy] = None
        self.confirmation_client: Optional[PayfastConfirmationClient] = None
        self.validator: Optional[ITNValidator] = None
        self.api: Optional[ITNAPI] = None
        self.api_app: Optional[web.Application] = None
        self.api_runner: Optional[web.AppRunner] = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start all services."""
        logger.info("=" * 60)
        logger.info(f"Starting {config.service.name}")
        logger.info("=" * 60)

        # Validate configuration
        errors = config.validate()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError("Invalid configuration")

        credentials = config.credentials()

        # Initialize validation collaborators
        logger.info("Initializing validator...")
        self.origin_policy = DnsOriginTrustPolicy(
            valid_hosts=config.validation.valid_hosts,
            timeout=config.validation.dns_timeout
        )
        self.confirmation_client = PayfastConfirmationClient(
            credentials.base_url,
            timeout=config.validation.confirm_timeout
        )
        await self.confirmation_client.start()

        self.validator = ITNValidator(
            credentials,
            origin_policy=self.origin_policy,
            confirmation_client=self.confirmation_client,
            amount_tolerance=config.validation.amount_tolerance
        )

        # Start API server
        logger.info("Starting API server...")
        self.api_app = create_app(
            validator=self.validator,
            amount_lookup=self.amount_lookup,
            itn_path=config.api.itn_path
        )
        self.api = self.api_app['itn_api']
        self.api.on_payment(self._handle_payment)

        self.api_runner = web.AppRunner(self.api_app)
        await self.api_runner.setup()

        site = web.TCPSite(
            self.api_runner,
            config.api.host,
            config.api.port
        )
        await site.start()

        logger.info("=" * 60)
        logger.info("Service started successfully!")
        logger.info(
            f"ITN endpoint at http://{config.api.host}:{config.api.port}{config.api.itn_path}"
        )
        logger.info(f"Gateway: {credentials.base_url}")
        logger.info("=" * 60)

    async def stop(self) -> None:
        """Stop all services gracefully."""
        logger.info("Initiating graceful shutdown...")

        # Stop accepting new requests
        if self.api_runner:
            await self.api_runner.cleanup()

        if self.confirmation_client:
            await self.confirmation_client.stop()

        if self.origin_policy:
            await self.origin_policy.close()

        logger.info("Shutdown complete")
        self._shutdown_event.set()

    async def _handle_payment(self, notification: Notification) -> None:
        """Log a validated notification."""
        if notification.is_complete:
            logger.info(f"Payment {notification.short_id()} complete")
        else:
            logger.info(
                f"Payment {notification.short_id()} status {notification.status}"
            )

    async def run(self) -> None:
        """Run the service until shutdown signal."""
        await self.start()

        # Wait for shutdown signal
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request service shutdown."""
        asyncio.create_task(self.stop())


def handle_signal(service: PayfastITNService, sig: signal.Signals) -> None:
    """Handle shutdown signals."""
    logger.info(f"Received signal {sig.name}, initiating shutdown...")
    service.request_shutdown()


async def main() -> None:
    """Main entry point."""
    setup_logging()

    if config.api.amount_lookup is None:
        logger.warning(
            "ITN_AMOUNT_LOOKUP is not set; every ITN will be rejected for a missing amount"
        )

    service = PayfastITNService(
        amount_lookup=load_amount_lookup(config.api.amount_lookup)
    )

    # Set up signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda s=sig: handle_signal(service, s)
        )

    try:
        await service.run()
    except Exception as e:
        logger.error(f"Service error: {e}", exc_info=True)
        await service.stop()
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == '__main__':
    run()
