"""
Unit tests for ITN intake and validation services.

Run with: pytest tests/test_services.py -v
"""

import asyncio
import hashlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp import web
from aiohttp import test_utils

from payfast_itn.exceptions import GatewayUnavailableError
from payfast_itn.models.credentials import MerchantCredentials
from payfast_itn.models.notification import Notification, RequestContext
from payfast_itn.models.validation import FailureReason, ValidationStage
from payfast_itn.services.confirmation import ConfirmationClient, PayfastConfirmationClient
from payfast_itn.services.intake import NotificationIntake, strip_slashes
from payfast_itn.services.itn_validator import ITNValidator
from payfast_itn.services.onsite import OnsitePaymentService
from payfast_itn.services.origin import (
    DEFAULT_VALID_HOSTS,
    DnsOriginTrustPolicy,
    StaticOriginTrustPolicy,
    origin_host,
)


PAYFAST_IP = '197.97.145.144'
SANDBOX_IP = '197.97.145.145'
PASSPHRASE = 'jt7NOE43FZPn'

HOST_TABLE = {
    'www.payfast.co.za': [PAYFAST_IP],
    'sandbox.payfast.co.za': [SANDBOX_IP],
    'w1w.payfast.co.za': [PAYFAST_IP],
    'evil.example.com': ['203.0.113.7'],
}


def sign(fields, passphrase=None):
    """Sign ITN fields the way Payfast does, independently of the signer."""
    raw = '&'.join(f'{k}={v}' for k, v in fields.items())
    if passphrase is not None:
        raw += f'&passphrase={passphrase}'
    return hashlib.md5(raw.encode()).hexdigest()


def make_notification(passphrase=PASSPHRASE, origin='https://www.payfast.co.za/eng/process', **overrides):
    fields = {
        'm_payment_id': 'SuperUnique1',
        'payment_status': 'COMPLETE',
        'amount_gross': '200.00',
        'merchant_id': '10012577',
    }
    fields.update(overrides)
    fields['signature'] = sign(fields, passphrase)
    return Notification(data=fields, signature=fields['signature'], origin=origin)


class StubConfirmationClient(ConfirmationClient):
    """Confirmation client returning a canned answer."""

    def __init__(self, answer=True, error=None):
        self.answer = answer
        self.error = error
        self.param_strings = []

    async def confirm(self, param_string):
        self.param_strings.append(param_string)
        if self.error:
            raise self.error
        return self.answer


@pytest.fixture
def credentials():
    return MerchantCredentials(
        merchant_id='10012577',
        merchant_key='46f0cd694581a',
        passphrase=PASSPHRASE
    )


@pytest.fixture
def origin_policy():
    return StaticOriginTrustPolicy(HOST_TABLE)


@pytest.fixture
def confirmation():
    return StubConfirmationClient()


@pytest.fixture
def validator(credentials, origin_policy, confirmation):
    return ITNValidator(
        credentials,
        origin_policy=origin_policy,
        confirmation_client=confirmation
    )


class TestIntake:
    """Tests for notification intake."""

    def test_strip_slashes(self):
        """Test removal of upstream backslash escaping."""
        assert strip_slashes("O\\'Reilly") == "O'Reilly"
        assert strip_slashes('a\\\\b') == 'a\\b'
        assert strip_slashes('trailing\\') == 'trailing'
        assert strip_slashes('plain') == 'plain'

    def test_from_context(self):
        """Test building a notification from a POST context."""
        context = RequestContext(
            method='POST',
            fields={'m_payment_id': '1', 'name_last': "O\\'Reilly", 'signature': 'abc'},
            referer='https://www.payfast.co.za/'
        )

        notification = NotificationIntake.from_context(context)

        assert notification is not None
        assert notification.signature == 'abc'
        assert notification.origin == 'https://www.payfast.co.za/'
        assert notification.get('name_last') == "O'Reilly"
        assert list(notification.fields) == ['m_payment_id', 'name_last', 'signature']

    def test_rejects_non_post(self):
        """Test that only POST requests are handled."""
        context = RequestContext(method='GET', fields={'signature': 'abc'})

        assert NotificationIntake.from_context(context) is None

    def test_rejects_missing_signature(self):
        """Test that a body without signature is not handled."""
        context = RequestContext(method='POST', fields={'m_payment_id': '1'})

        assert NotificationIntake.from_context(context) is None

    def test_lowercase_method(self):
        """Test that the method comparison ignores case."""
        context = RequestContext(method='post', fields={'signature': 'abc'})

        assert NotificationIntake.from_context(context) is not None

    def test_rejects_malformed_body(self):
        """Test that a body that could not be parsed is not handled."""
        context = RequestContext(method='POST', malformed=True)

        assert NotificationIntake.from_context(context) is None


class TestOriginPolicy:
    """Tests for origin trust policies."""

    def test_origin_host(self):
        """Test extracting the host from a Referer."""
        assert origin_host('https://www.payfast.co.za/eng/process') == 'www.payfast.co.za'
        assert origin_host('sandbox.payfast.co.za') == 'sandbox.payfast.co.za'
        assert origin_host('') is None
        assert origin_host(None) is None

    @pytest.mark.asyncio
    async def test_static_policy(self, origin_policy):
        """Test the static table policy."""
        assert await origin_policy.trusted_addresses() == {PAYFAST_IP, SANDBOX_IP}
        assert await origin_policy.resolve_origin('w1w.payfast.co.za') == PAYFAST_IP
        assert await origin_policy.resolve_origin(SANDBOX_IP) == SANDBOX_IP
        assert await origin_policy.resolve_origin('evil.example.com') == '203.0.113.7'
        assert await origin_policy.resolve_origin('unknown.example.com') is None

    @pytest.mark.asyncio
    async def test_static_policy_empty_table(self):
        """Test that an empty table trusts no address."""
        policy = StaticOriginTrustPolicy({})

        assert await policy.trusted_addresses() == set()

    def test_dns_policy_built_outside_event_loop(self):
        """Test that the DNS policy can be built without a running loop."""
        policy = DnsOriginTrustPolicy()

        assert policy.valid_hosts == DEFAULT_VALID_HOSTS

    @pytest.mark.asyncio
    async def test_dns_policy_creates_and_closes_resolver(self):
        """Test that the resolver is created on first lookup and closed by close()."""
        resolver = MagicMock()
        resolver.resolve = AsyncMock(return_value=[{'host': PAYFAST_IP}])
        resolver.close = AsyncMock()

        with patch('payfast_itn.services.origin.ThreadedResolver', return_value=resolver) as factory:
            policy = DnsOriginTrustPolicy(valid_hosts=['www.payfast.co.za'])
            factory.assert_not_called()

            assert await policy.trusted_addresses() == {PAYFAST_IP}
            await policy.trusted_addresses()

        factory.assert_called_once_with()

        await policy.close()

        resolver.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dns_policy_keeps_injected_resolver(self):
        """Test that close() leaves an injected resolver open."""
        resolver = MagicMock()
        resolver.close = AsyncMock()
        policy = DnsOriginTrustPolicy(resolver=resolver)

        await policy.close()

        resolver.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dns_policy_unions_and_dedups(self):
        """Test that resolved addresses are unioned across hosts."""
        resolver = MagicMock()
        resolver.resolve = AsyncMock(side_effect=[
            [{'host': PAYFAST_IP}],
            [{'host': SANDBOX_IP}, {'host': PAYFAST_IP}],
        ])
        policy = DnsOriginTrustPolicy(
            valid_hosts=['www.payfast.co.za', 'sandbox.payfast.co.za'],
            resolver=resolver
        )

        assert await policy.trusted_addresses() == {PAYFAST_IP, SANDBOX_IP}

    @pytest.mark.asyncio
    async def test_dns_policy_skips_unresolvable_hosts(self):
        """Test that a host failing to resolve does not fail the others."""
        resolver = MagicMock()
        resolver.resolve = AsyncMock(side_effect=[
            OSError('Name or service not known'),
            [{'host': SANDBOX_IP}],
        ])
        policy = DnsOriginTrustPolicy(
            valid_hosts=['www.payfast.co.za', 'sandbox.payfast.co.za'],
            resolver=resolver
        )

        assert await policy.trusted_addresses() == {SANDBOX_IP}

    @pytest.mark.asyncio
    async def test_dns_policy_nothing_resolved(self):
        """Test that resolving nothing is reported as unavailability."""
        resolver = MagicMock()
        resolver.resolve = AsyncMock(side_effect=OSError('no network'))
        policy = DnsOriginTrustPolicy(valid_hosts=['www.payfast.co.za'], resolver=resolver)

        with pytest.raises(GatewayUnavailableError) as exc_info:
            await policy.trusted_addresses()

        assert not exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_dns_policy_timeout(self):
        """Test that a slow resolver is cut off and reported as a timeout."""
        async def slow_resolve(host, port, family):
            await asyncio.sleep(1)
            return [{'host': PAYFAST_IP}]

        resolver = MagicMock()
        resolver.resolve = slow_resolve
        policy = DnsOriginTrustPolicy(
            valid_hosts=['www.payfast.co.za'],
            timeout=0.05,
            resolver=resolver
        )

        with pytest.raises(GatewayUnavailableError) as exc_info:
            await policy.trusted_addresses()

        assert exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_dns_policy_resolves_origin(self):
        """Test resolving the origin host."""
        resolver = MagicMock()
        resolver.resolve = AsyncMock(return_value=[{'host': PAYFAST_IP}])
        policy = DnsOriginTrustPolicy(resolver=resolver)

        assert await policy.resolve_origin('www.payfast.co.za') == PAYFAST_IP
        assert await policy.resolve_origin(SANDBOX_IP) == SANDBOX_IP

        resolver.resolve = AsyncMock(side_effect=OSError('unknown host'))
        assert await policy.resolve_origin('unknown.example.com') is None


class TestValidatorLifecycle:
    """Tests for building and closing the validator."""

    def test_default_collaborators_built_without_loop(self, credentials):
        """Test that a validator with default collaborators can be built synchronously."""
        validator = ITNValidator(credentials)

        assert isinstance(validator.origin_policy, DnsOriginTrustPolicy)
        assert isinstance(validator.confirmation_client, PayfastConfirmationClient)
        assert validator.confirmation_client.url == (
            'https://sandbox.payfast.co.za/eng/query/validate'
        )

    @pytest.mark.asyncio
    async def test_close_releases_default_collaborators(self, credentials):
        """Test that close() stops the collaborators the validator built."""
        validator = ITNValidator(credentials)
        await validator.confirmation_client.start()
        session = validator.confirmation_client._session

        with patch.object(validator.origin_policy, 'close', AsyncMock()) as policy_close:
            await validator.close()

        assert session.closed
        policy_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_leaves_injected_collaborators(self, credentials):
        """Test that close() does not stop collaborators passed in."""
        policy = MagicMock(spec=DnsOriginTrustPolicy)
        policy.close = AsyncMock()
        client = MagicMock(spec=PayfastConfirmationClient)
        client.stop = AsyncMock()
        validator = ITNValidator(credentials, origin_policy=policy, confirmation_client=client)

        await validator.close()

        policy.close.assert_not_awaited()
        client.stop.assert_not_awaited()


class TestValidatorStages:
    """Tests for the individual validation stages."""

    def test_signature_with_same_passphrase(self, validator):
        """Test that a correctly signed notification passes stage 1."""
        assert validator.check_signature(make_notification())

    def test_signature_with_other_passphrase(self, validator):
        """Test that a notification signed with another passphrase fails."""
        assert not validator.check_signature(make_notification(passphrase='other'))
        assert not validator.check_signature(make_notification(passphrase=None))

    def test_signature_without_passphrase(self, origin_policy, confirmation):
        """Test merchants without a passphrase."""
        creds = MerchantCredentials('10012577', '46f0cd694581a')
        validator = ITNValidator(creds, origin_policy, confirmation)

        assert validator.check_signature(make_notification(passphrase=None))
        assert not validator.check_signature(make_notification())

    def test_signature_after_tampering(self, validator):
        """Test that altering a field after signing fails stage 1."""
        notification = make_notification()
        data = notification.fields
        data['amount_gross'] = '2.00'
        tampered = Notification(data=data, signature=notification.signature)

        assert not validator.check_signature(tampered)

    def test_signature_keeps_empty_fields(self, validator):
        """Test that empty ITN fields take part in the signature."""
        notification = make_notification(custom_str1='', item_description='')

        assert validator.check_signature(notification)

    @pytest.mark.asyncio
    async def test_origin_trusted(self, validator):
        """Test a notification from a Payfast host."""
        assert await validator.check_origin(make_notification())

    @pytest.mark.asyncio
    async def test_origin_with_no_trusted_addresses(self, credentials, confirmation):
        """Test that an empty trusted set trusts nothing."""
        validator = ITNValidator(credentials, StaticOriginTrustPolicy({}), confirmation)

        outcome = await validator.evaluate_origin(
            make_notification(origin=f'https://{PAYFAST_IP}/')
        )

        assert not outcome
        assert outcome.reason == FailureReason.UNTRUSTED_ORIGIN

    @pytest.mark.asyncio
    async def test_origin_missing(self, validator):
        """Test that a missing Referer fails closed."""
        outcome = await validator.evaluate_origin(make_notification(origin=None))

        assert not outcome
        assert outcome.reason == FailureReason.MISSING_ORIGIN

    @pytest.mark.asyncio
    async def test_origin_untrusted(self, validator):
        """Test a notification from a foreign host."""
        outcome = await validator.evaluate_origin(
            make_notification(origin='https://evil.example.com/itn')
        )

        assert outcome.reason == FailureReason.UNTRUSTED_ORIGIN

    @pytest.mark.asyncio
    async def test_origin_unavailable(self, credentials, confirmation):
        """Test that DNS failure is reported as infrastructure, not forgery."""
        policy = MagicMock()
        policy.trusted_addresses = AsyncMock(
            side_effect=GatewayUnavailableError('dns down', timed_out=True)
        )
        validator = ITNValidator(credentials, policy, confirmation)

        outcome = await validator.evaluate_origin(make_notification())

        assert outcome.reason == FailureReason.ORIGIN_TIMEOUT

    @pytest.mark.parametrize('received,expected', [
        ('100.00', True),
        ('100', True),
        ('100.009', True),
        ('99.995', True),
        ('100.02', False),
        ('99.98', False),
        ('abc', False),
    ])
    def test_amount(self, validator, received, expected):
        """Test the amount tolerance."""
        notification = make_notification(amount_gross=received)

        assert validator.check_amount(notification, 100.00) is expected

    def test_amount_absent(self, validator):
        """Test that a missing amount_gross fails."""
        fields = {'m_payment_id': '1', 'signature': 'abc'}
        notification = Notification(data=fields, signature='abc')

        outcome = validator.evaluate_amount(notification, 100.00)

        assert not outcome
        assert outcome.reason == FailureReason.MISSING_AMOUNT

    @pytest.mark.asyncio
    async def test_confirmation_posts_unkeyed_string(self, validator, confirmation):
        """Test that the unkeyed canonical string is posted."""
        assert await validator.confirm_with_gateway(make_notification())

        assert confirmation.param_strings == [
            'm_payment_id=SuperUnique1&payment_status=COMPLETE'
            '&amount_gross=200.00&merchant_id=10012577'
        ]

    @pytest.mark.asyncio
    async def test_confirmation_rejected(self, credentials, origin_policy):
        """Test a notification Payfast does not confirm."""
        validator = ITNValidator(
            credentials, origin_policy, StubConfirmationClient(answer=False)
        )

        outcome = await validator.evaluate_confirmation(make_notification())

        assert outcome.reason == FailureReason.CONFIRMATION_REJECTED

    @pytest.mark.asyncio
    async def test_confirmation_unavailable(self, credentials, origin_policy):
        """Test that a network error is distinguished from rejection."""
        client = StubConfirmationClient(error=GatewayUnavailableError('connection refused'))
        validator = ITNValidator(credentials, origin_policy, client)

        outcome = await validator.evaluate_confirmation(make_notification())

        assert outcome.reason == FailureReason.CONFIRMATION_UNAVAILABLE


class TestValidatePipeline:
    """Tests for the full validation pipeline."""

    @pytest.mark.asyncio
    async def test_end_to_end_valid(self, validator):
        """Test a genuine, complete notification."""
        notification = make_notification()

        result = await validator.validate(notification, 200.00)

        assert result
        assert result.valid
        assert result.stages_passed == [
            ValidationStage.SIGNATURE,
            ValidationStage.ORIGIN,
            ValidationStage.AMOUNT,
            ValidationStage.CONFIRMATION,
        ]
        assert notification.is_complete
        assert await validator.is_valid(notification, 200.00) is True

    @pytest.mark.asyncio
    async def test_flipped_signature_character(self, validator, confirmation):
        """Test that one flipped signature character fails validation."""
        genuine = make_notification()
        flipped_char = 'a' if genuine.signature[0] != 'a' else 'b'
        signature = flipped_char + genuine.signature[1:]
        data = genuine.fields
        data['signature'] = signature
        notification = Notification(data=data, signature=signature, origin=genuine.origin)

        result = await validator.validate(notification, 200.00)

        assert not result
        assert result.stage == ValidationStage.SIGNATURE
        assert result.reason == FailureReason.SIGNATURE_MISMATCH
        assert result.is_authenticity_failure()
        assert confirmation.param_strings == []  # short-circuited

    @pytest.mark.asyncio
    async def test_amount_mismatch(self, validator):
        """Test that a wrong amount is an integrity failure."""
        result = await validator.validate(make_notification(), 150.00)

        assert not result
        assert result.reason == FailureReason.AMOUNT_MISMATCH
        assert result.stages_passed == [ValidationStage.SIGNATURE, ValidationStage.ORIGIN]

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, credentials, origin_policy):
        """Test that a confirmation timeout is an infrastructure failure."""
        client = StubConfirmationClient(
            error=GatewayUnavailableError('timeout', timed_out=True)
        )
        validator = ITNValidator(credentials, origin_policy, client)

        result = await validator.validate(make_notification(), 200.00)

        assert not result
        assert result.reason == FailureReason.CONFIRMATION_TIMEOUT
        assert result.is_infrastructure_failure()


def validate_endpoint_app(expected_body, answer='VALID', delay=0):
    async def handle_validate(request):
        body = await request.text()
        if delay:
            await asyncio.sleep(delay)
        return web.Response(text=answer if body == expected_body else 'INVALID')

    app = web.Application()
    app.router.add_post('/eng/query/validate', handle_validate)
    return app


class TestPayfastConfirmationClient:
    """Tests for the aiohttp confirmation client."""

    @pytest.mark.asyncio
    async def test_valid_response(self):
        """Test a VALID answer."""
        server = test_utils.TestServer(validate_endpoint_app('a=1&b=2'))
        await server.start_server()
        client = PayfastConfirmationClient(
            f'{server.host}:{server.port}', timeout=5, scheme='http'
        )
        try:
            assert await client.confirm('a=1&b=2') is True
            assert await client.confirm('a=1&b=3') is False
        finally:
            await client.stop()
            await server.close()

    @pytest.mark.asyncio
    async def test_other_body_is_not_valid(self):
        """Test that only the literal VALID confirms."""
        server = test_utils.TestServer(validate_endpoint_app('a=1', answer='VALID\n'))
        await server.start_server()
        client = PayfastConfirmationClient(
            f'{server.host}:{server.port}', timeout=5, scheme='http'
        )
        try:
            assert await client.confirm('a=1') is False
        finally:
            await client.stop()
            await server.close()

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test that a slow gateway raises a timeout."""
        server = test_utils.TestServer(validate_endpoint_app('a=1', delay=1))
        await server.start_server()
        client = PayfastConfirmationClient(
            f'{server.host}:{server.port}', timeout=0.1, scheme='http'
        )
        try:
            with pytest.raises(GatewayUnavailableError) as exc_info:
                await client.confirm('a=1')
            assert exc_info.value.timed_out
        finally:
            await client.stop()
            await server.close()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Test that an unreachable gateway raises."""
        client = PayfastConfirmationClient('127.0.0.1:1', timeout=2, scheme='http')
        try:
            with pytest.raises(GatewayUnavailableError) as exc_info:
                await client.confirm('a=1')
            assert not exc_info.value.timed_out
        finally:
            await client.stop()

    def test_url(self):
        """Test the validate endpoint URL."""
        client = PayfastConfirmationClient('sandbox.payfast.co.za')

        assert client.url == 'https://sandbox.payfast.co.za/eng/query/validate'


class TestOnsitePaymentService:
    """Tests for the onsite payment identifier service."""

    @pytest.mark.asyncio
    async def test_generate_payment_identifier(self):
        """Test retrieving the payment UUID."""
        received = {}

        async def handle_process(request):
            received['body'] = await request.text()
            return web.json_response({'uuid': '4b2f3b4c-uuid'})

        app = web.Application()
        app.router.add_post('/onsite/process', handle_process)
        server = test_utils.TestServer(app)
        await server.start_server()

        creds = MerchantCredentials('10000100', '46f0cd694581a', passphrase='salt')
        service = OnsitePaymentService(
            creds, scheme='http', base_url=f'{server.host}:{server.port}'
        )
        try:
            uuid = await service.setup_onsite_payment({
                'merchant_id': '10000100',
                'merchant_key': '46f0cd694581a',
                'amount': '100.00',
                'item_name': 'Test',
                'email_address': ''
            })
        finally:
            await service.stop()
            await server.close()

        assert uuid == '4b2f3b4c-uuid'
        assert received['body'].startswith(
            'merchant_id=10000100&merchant_key=46f0cd694581a&amount=100.00&item_name=Test&signature='
        )

    @pytest.mark.asyncio
    async def test_response_without_uuid(self):
        """Test that an error response yields no identifier."""
        async def handle_process(request):
            return web.json_response({'error': 'Invalid signature'}, status=400)

        app = web.Application()
        app.router.add_post('/onsite/process', handle_process)
        server = test_utils.TestServer(app)
        await server.start_server()

        creds = MerchantCredentials('10000100', '46f0cd694581a')
        service = OnsitePaymentService(
            creds, scheme='http', base_url=f'{server.host}:{server.port}'
        )
        try:
            assert await service.setup_onsite_payment({'amount': '1.00'}) is None
        finally:
            await service.stop()
            await server.close()

    def test_process_url(self):
        """Test the onsite endpoint URL."""
        creds = MerchantCredentials('10000100', '46f0cd694581a', sandbox=False)

        assert OnsitePaymentService(creds).process_url == 'https://www.payfast.co.za/onsite/process'


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
