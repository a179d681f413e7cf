"""
ITN intake.

Turns an incoming transport request into a Notification. Intake only
parses; it never decides whether the notification can be trusted.
"""

import logging
from typing import Dict, Mapping, Optional

from aiohttp import web

from ..models.notification import SIGNATURE_FIELD, Notification, RequestContext

logger = logging.getLogger(__name__)

# The only method Payfast uses to post ITNs
ITN_METHOD = 'POST'


def strip_slashes(value: str) -> str:
    """
    Remove backslash escaping applied upstream.

    "\\x" becomes "x", an escaped backslash becomes a single backslash and
    a trailing lone backslash is dropped.
    """
    if '\\' not in value:
        return value

    result = []
    chars = iter(value)
    for char in chars:
        if char == '\\':
            escaped = next(chars, None)
            if escaped is not None:
                result.append(escaped)
        else:
            result.append(char)
    return ''.join(result)


class NotificationIntake:
    """
    Materializes notifications from transport requests.

    Usage:
        context = await NotificationIntake.context_from_request(request)
        notification = NotificationIntake.from_context(context)
        if notification is None:
            return  # not handled
    """

    @staticmethod
    def from_context(context: RequestContext) -> Optional[Notification]:
        """
        Build a notification from a request context.

        Args:
            context: Method, ordered body fields and Referer of the request

        Returns:
            Notification, or None if the request is not an ITN we handle
        """
        if (context.method or '').upper() != ITN_METHOD:
            logger.warning(f"Ignoring ITN request with method {context.method}")
            return None

        if context.malformed:
            logger.warning("Ignoring ITN request with a malformed body")
            return None

        data = NotificationIntake.unescape(context.fields)

        signature = data.get(SIGNATURE_FIELD)
        if not signature:
            logger.warning("Ignoring ITN request without a signature field")
            return None

        return Notification(
            data=data,
            signature=signature,
            origin=context.referer
        )

    @staticmethod
    def unescape(fields: Mapping[str, str]) -> Dict[str, str]:
        """Strip upstream escaping from every value, keeping field order."""
        return {key: strip_slashes(str(value)) for key, value in fields.items()}

    @staticmethod
    async def context_from_request(request: web.Request) -> RequestContext:
        """
        Build a request context from an aiohttp request.

        Repeated keys keep their last value, like a PHP form post.

        Args:
            request: Incoming aiohttp request

        Returns:
            RequestContext for intake
        """
        fields: Dict[str, str] = {}
        malformed = False

        if request.method.upper() == ITN_METHOD:
            try:
                form = await request.post()
            except (ValueError, web.HTTPException) as e:
                # Undecodable or oversized body
                logger.warning(f"Could not parse ITN body: {e}")
                malformed = True
            else:
                for key, value in form.items():
                    if isinstance(value, str):
                        fields[key] = value

        return RequestContext(
            method=request.method,
            fields=fields,
            referer=request.headers.get('Referer'),
            malformed=malformed
        )

    @staticmethod
    async def from_request(request: web.Request) -> Optional[Notification]:
        """Shortcut for context_from_request followed by from_context."""
        context = await NotificationIntake.context_from_request(request)
        return NotificationIntake.from_context(context)
