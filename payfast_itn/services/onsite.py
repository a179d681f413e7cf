"""
Onsite Payment Service.

Retrieves the payment identifier (UUID) used to open Payfast's on-site
payment modal. The modal itself is initialised client-side with the UUID.
Payfast requires the checkout page to be served over HTTPS.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..exceptions import GatewayUnavailableError
from ..models.credentials import MerchantCredentials
from .signer import canonical_string, include_non_empty, sign_fields

logger = logging.getLogger(__name__)

ONSITE_PATH = '/onsite/process'


class OnsitePaymentService:
    """
    Client for Payfast's /onsite/process endpoint.

    Usage:
        service = OnsitePaymentService(credentials)
        uuid = await service.setup_onsite_payment(fields)
    """

    def __init__(
        self,
        credentials: MerchantCredentials,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        scheme: str = 'https',
        base_url: Optional[str] = None
    ):
        """
        Initialize the service.

        Args:
            credentials: Merchant credentials used to sign the request
            timeout: Request timeout in seconds
            session: Optional aiohttp session to reuse
            scheme: URL scheme; https against the real gateway
            base_url: Host override (defaults to the credentials' Payfast host)
        """
        self.credentials = credentials
        self.timeout = timeout
        self.scheme = scheme
        self.base_url = base_url or credentials.base_url
        self._session = session
        self._owns_session = session is None

    @property
    def process_url(self) -> str:
        """Payfast URL transaction and customer details are posted to."""
        return f"{self.scheme}://{self.base_url}{ONSITE_PATH}"

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True

    async def stop(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    def param_string(self, fields: Dict[str, Any]) -> str:
        """Sign the fields and convert them to the posted parameter string."""
        signed = sign_fields(fields, self.credentials.passphrase)
        return canonical_string(signed, include_non_empty)

    async def generate_payment_identifier(
        self,
        param_string: str,
        proxy: Optional[str] = None
    ) -> Optional[str]:
        """
        Post a parameter string and return the payment UUID.

        Args:
            param_string: Signed parameter string (see param_string())
            proxy: Optional HTTP proxy URL

        Returns:
            The payment identifier, or None if Payfast returned none

        Raises:
            GatewayUnavailableError: On network error or timeout
        """
        if self._session is None:
            await self.start()

        try:
            async with self._session.post(
                self.process_url,
                data=param_string.encode('utf-8'),
                headers={'Content-Type': 'application/x-www-form-urlencoded'},
                proxy=proxy
            ) as response:
                body = await response.text()
        except asyncio.TimeoutError:
            logger.error("Timeout requesting onsite payment identifier")
            raise GatewayUnavailableError(
                "Timeout contacting Payfast onsite endpoint",
                timed_out=True
            )
        except aiohttp.ClientError as e:
            logger.error(f"Network error requesting onsite payment identifier: {e}")
            raise GatewayUnavailableError(f"Cannot reach Payfast: {e}")

        try:
            data = json.loads(body)
        except ValueError:
            logger.warning(
                f"Unexpected onsite response (status {response.status}): {body[:200]}"
            )
            return None

        uuid = data.get('uuid') if isinstance(data, dict) else None
        if not uuid:
            logger.warning(f"Onsite response without uuid (status {response.status})")
            return None

        return uuid

    async def setup_onsite_payment(
        self,
        fields: Dict[str, Any],
        proxy: Optional[str] = None
    ) -> Optional[str]:
        """
        Sign the payment fields and retrieve the payment identifier.

        Args:
            fields: Ordered payment fields (merchant, buyer, transaction)
            proxy: Optional HTTP proxy URL

        Returns:
            The payment identifier, or None
        """
        return await self.generate_payment_identifier(
            self.param_string(fields),
            proxy=proxy
        )
