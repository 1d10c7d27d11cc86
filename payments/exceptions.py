class PaymentError(Exception):
    pass


class GatewayError(PaymentError):
    """The payment provider could not be reached or refused the request."""

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class SignatureError(PaymentError):
    pass


class DraftDecodeError(PaymentError):
    pass


class PersistenceError(PaymentError):
    pass
