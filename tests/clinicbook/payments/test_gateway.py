import json
from datetime import datetime, time, timezone

import httpx
import pytest

from clinicbook.payments.gateway import PixBillingGateway
from clinicbook.scheduling.entities import Booking, BookingStatus, PaymentStatus
from clinicbook.scheduling.errors import PaymentProviderError
from support import MONDAY, NOW, PROVIDER_ID

BOOKING = Booking(
    id=42,
    provider_id=PROVIDER_ID,
    date=MONDAY,
    time=time(9, 0),
    patient_name='Maria Silva',
    patient_email='maria@example.com',
    patient_phone=None,
    status=BookingStatus.PENDING,
    payment_status=PaymentStatus.PENDING,
    amount_cents=15000,
    created_at=NOW,
)


def _gateway(handler, api_key: str = 'test-key') -> PixBillingGateway:
    return PixBillingGateway(
        api_url='https://billing.example.com/v1/',
        api_key=api_key,
        return_url='https://clinic.example.com',
        transport=httpx.MockTransport(handler),
    )


def test_create_payment_intent_posts_billing_and_parses_response() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured['url'] = str(request.url)
        captured['auth'] = request.headers['authorization']
        captured['body'] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                'data': {
                    'id': 'bill_abc',
                    'url': 'https://pay.example.com/bill_abc',
                    'pix': {'payload': '000201PIX', 'qrCode': 'data:image/png;base64,xyz'},
                    'expiresAt': '2026-01-06T07:00:00Z',
                }
            },
        )

    intent = _gateway(handler).create_payment_intent(BOOKING, 'Fisioterapia')

    assert captured['url'] == 'https://billing.example.com/v1/billing/create'
    assert captured['auth'] == 'Bearer test-key'
    product = captured['body']['products'][0]
    assert product['externalId'] == '42'
    assert product['price'] == 15000
    assert captured['body']['metadata'] == {'appointment_id': '42'}
    assert captured['body']['returnUrl'] == 'https://clinic.example.com/agendamento-sucesso?appointment_id=42'
    assert intent.reference == 'bill_abc'
    assert intent.pix_code == '000201PIX'
    assert intent.pix_qr_code == 'data:image/png;base64,xyz'
    assert intent.expires_at == datetime(2026, 1, 6, 7, 0, tzinfo=timezone.utc)


def test_create_payment_intent_raises_on_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={'error': 'Invalid customer'})

    with pytest.raises(PaymentProviderError) as exception_info:
        _gateway(handler).create_payment_intent(BOOKING, 'Fisioterapia')

    assert exception_info.value.message == 'Invalid customer'


def test_create_payment_intent_raises_on_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout('timed out', request=request)

    with pytest.raises(PaymentProviderError):
        _gateway(handler).create_payment_intent(BOOKING, 'Fisioterapia')


def test_create_payment_intent_requires_billing_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={'data': {}})

    with pytest.raises(PaymentProviderError):
        _gateway(handler).create_payment_intent(BOOKING, 'Fisioterapia')


def test_create_payment_intent_requires_api_key() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError('no request expected')

    with pytest.raises(PaymentProviderError):
        _gateway(handler, api_key='').create_payment_intent(BOOKING, 'Fisioterapia')


@pytest.mark.parametrize(
    ('provider_status', 'expected'),
    [
        ('PAID', PaymentStatus.PAID),
        ('EXPIRED', PaymentStatus.EXPIRED),
        ('REFUNDED', PaymentStatus.FAILED),
        ('PENDING', PaymentStatus.PENDING),
        ('SOMETHING_NEW', PaymentStatus.PENDING),
    ],
)
def test_get_payment_status_maps_provider_status(provider_status, expected) -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured['method'] = request.method
        captured['url'] = str(request.url)
        captured['auth'] = request.headers['authorization']
        return httpx.Response(200, json={'data': {'id': 'bill_abc', 'status': provider_status}})

    assert _gateway(handler).get_payment_status('bill_abc') is expected
    assert captured['method'] == 'GET'
    assert captured['url'] == 'https://billing.example.com/v1/billing/get?id=bill_abc'
    assert captured['auth'] == 'Bearer test-key'


def test_get_payment_status_raises_on_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={'error': 'Billing not found'})

    with pytest.raises(PaymentProviderError) as exception_info:
        _gateway(handler).get_payment_status('bill_missing')

    assert exception_info.value.message == 'Billing not found'


def test_get_payment_status_raises_on_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout('timed out', request=request)

    with pytest.raises(PaymentProviderError):
        _gateway(handler).get_payment_status('bill_abc')
