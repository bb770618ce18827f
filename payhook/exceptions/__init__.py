"""Custom exceptions for the payment webhook service."""

class PayhookError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class AuthenticationFailure(PayhookError):
    """Raised when a webhook signature is required but does not match."""
    def __init__(self, message="Invalid signature"):
        super().__init__(message, 403)

class MalformedPayload(PayhookError):
    """Raised when a webhook body cannot be parsed."""
    def __init__(self, message="Invalid JSON"):
        super().__init__(message, 400)

class UnknownProvider(PayhookError):
    """Raised for webhook URLs naming a provider we do not accept."""
    def __init__(self, provider):
        super().__init__("Unknown provider", 404, {'provider': provider})

class IntegrationError(PayhookError):
    """Raised by outbound clients (Square, Zoho Books, mail) on remote failure."""
    def __init__(self, message, provider=None, status_code=502):
        super().__init__(message, status_code, {'provider': provider} if provider else None)
        self.provider = provider

class NotConfiguredError(IntegrationError):
    """Raised when an outbound client is used without credentials."""
    def __init__(self, provider):
        super().__init__(f"{provider} is not configured", provider=provider, status_code=503)
