import hashlib
import hmac
import logging
from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

import requests
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import drafts
from .exceptions import GatewayError

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = ['card', 'bank', 'mobile_money']
SIGNATURE_HEADER = 'x-paystack-signature'

InitializedTransaction = namedtuple('InitializedTransaction', ['redirect_url', 'reference', 'access_code'])


def to_minor_units(amount):
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(amount):
    return (Decimal(str(amount)) / 100).quantize(Decimal('0.01'))


def compute_signature(raw_body, secret):
    if isinstance(raw_body, str):
        raw_body = raw_body.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha512).hexdigest()


class PaystackClient:
    """Thin wrapper over the Paystack transaction API.

    All calls raise ``GatewayError`` when the provider cannot be reached, answers
    with a non-2xx status or reports ``status: false`` in its envelope.
    """

    def __init__(self, secret_key, base_url='https://api.paystack.co', timeout=15,
                 max_retries=1, currency='KES', callback_url=None, session=None):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.currency = currency
        self.callback_url = callback_url
        self.session = session or self._build_session(max_retries)

    @classmethod
    def from_settings(cls):
        return cls(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.PAYSTACK_TIMEOUT,
            max_retries=settings.PAYSTACK_MAX_RETRIES,
            currency=settings.PAYMENTS_CURRENCY,
            callback_url=f"{settings.APP_BASE_URL.rstrip('/')}/payment/callback",
        )

    def _build_session(self, max_retries):
        session = requests.Session()
        retry = Retry(
            total=max_retries,
            connect=max_retries,
            read=max_retries,
            status=max_retries,
            status_forcelist=(502, 503, 504),
            allowed_methods=frozenset(['GET', 'POST']),
            backoff_factor=0.5,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount('https://', adapter)
        session.mount('http://', adapter)
        return session

    def _headers(self):
        return {
            'Authorization': f'Bearer {self.secret_key}',
            'Content-Type': 'application/json',
        }

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error("Paystack %s %s failed: %s", method, path, e)
            raise GatewayError(f'Gateway request failed: {e}') from e

        try:
            body = resp.json()
        except ValueError:
            body = {'raw': resp.text}
        if not isinstance(body, dict):
            body = {'raw': body}

        if resp.status_code >= 400 or not body.get('status'):
            message = body.get('message') or f'HTTP {resp.status_code}'
            logger.warning("Paystack %s %s rejected (%s): %s", method, path, resp.status_code, message)
            raise GatewayError(f'Gateway error: {message}', status_code=resp.status_code, payload=body)
        return body

    def initialize(self, amount, email, reference, metadata, booking_draft=None, channels=None):
        metadata = dict(metadata or {})
        if booking_draft is not None:
            metadata[drafts.METADATA_KEY] = drafts.encode(booking_draft)

        payload = {
            'amount': to_minor_units(amount),
            'email': email,
            'reference': reference,
            'currency': self.currency,
            'channels': list(channels or DEFAULT_CHANNELS),
            'metadata': metadata,
        }
        if self.callback_url:
            payload['callback_url'] = self.callback_url

        body = self._request('POST', '/transaction/initialize', json=payload)
        data = body.get('data') or {}
        if not data.get('authorization_url'):
            raise GatewayError('Gateway response missing authorization_url', payload=body)

        logger.info("Initialized Paystack transaction %s for %s %s", reference, amount, self.currency)
        return InitializedTransaction(
            redirect_url=data['authorization_url'],
            reference=data.get('reference') or reference,
            access_code=data.get('access_code', ''),
        )

    def verify(self, reference):
        return self._request('GET', f'/transaction/verify/{reference}').get('data') or {}

    def get_transaction(self, transaction_id):
        return self._request('GET', f'/transaction/{transaction_id}').get('data') or {}

    def list_transactions(self, page=1, per_page=50, status=None):
        params = {'page': page, 'perPage': per_page}
        if status:
            params['status'] = status
        body = self._request('GET', '/transaction', params=params)
        return body.get('data') or [], body.get('meta') or {}

    def verify_signature(self, raw_body, signature):
        if not signature or not self.secret_key:
            return False
        expected = compute_signature(raw_body, self.secret_key)
        return hmac.compare_digest(expected.encode('utf-8'), signature.encode('utf-8'))
