"""
Out-of-band ITN confirmation.

Posts the notification's parameter string back to Payfast's validate
endpoint, which answers with the literal body "VALID" for notifications
it actually sent.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from ..exceptions import GatewayUnavailableError

logger = logging.getLogger(__name__)

VALIDATE_PATH = '/eng/query/validate'
VALID_RESPONSE = 'VALID'


class ConfirmationClient(ABC):
    """Transport for the gateway's confirmation call."""

    @abstractmethod
    async def confirm(self, param_string: str) -> bool:
        """
        Ask the gateway whether it sent the notification.

        Args:
            param_string: Unkeyed canonical string of the notification

        Returns:
            True if the gateway answered VALID

        Raises:
            GatewayUnavailableError: On network error or timeout
        """


class PayfastConfirmationClient(ConfirmationClient):
    """
    Confirmation client for Payfast's /eng/query/validate endpoint.

    The session is opened in start() (or lazily on first use) and closed
    in stop(). A session may also be injected.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        scheme: str = 'https'
    ):
        """
        Initialize the client.

        Args:
            base_url: Payfast host (sandbox or live)
            timeout: Request timeout in seconds
            session: Optional aiohttp session to reuse
            scheme: URL scheme; https against the real gateway
        """
        self.url = f"{scheme}://{base_url}{VALIDATE_PATH}"
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        """Open the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True

    async def stop(self) -> None:
        """Close the HTTP session if this client opened it."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def confirm(self, param_string: str) -> bool:
        if self._session is None:
            await self.start()

        headers = {
            'Content-Type': 'application/x-www-form-urlencoded',
            'User-Agent': 'payfast-itn'
        }

        try:
            async with self._session.post(
                self.url,
                data=param_string.encode('utf-8'),
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                body = await response.text()
        except asyncio.TimeoutError:
            logger.error(f"Timeout confirming ITN with {self.url}")
            raise GatewayUnavailableError(
                "Timeout contacting Payfast validate endpoint",
                timed_out=True
            )
        except aiohttp.ClientError as e:
            logger.error(f"Network error confirming ITN: {e}")
            raise GatewayUnavailableError(f"Cannot reach Payfast: {e}")

        if response.status >= 500:
            logger.error(f"Payfast validate endpoint returned {response.status}")
            raise GatewayUnavailableError(
                f"Payfast validate endpoint returned HTTP {response.status}"
            )

        return body == VALID_RESPONSE
