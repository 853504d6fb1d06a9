"""
Exception hierarchy for invoice operations

Each error carries the HTTP status the API layer answers with.
"""


class InvoiceAssistantError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(InvoiceAssistantError):
    """Missing or malformed request field. Nothing was mutated."""
    status_code = 400


class NotFoundError(InvoiceAssistantError):
    """Unknown invoice. Nothing was mutated."""
    status_code = 404


class DownstreamError(InvoiceAssistantError):
    """Similarity oracle or ERP call failed; the invoice was marked ERROR."""
    status_code = 500


class OracleError(Exception):
    """Embedding service unavailable or returned an unusable response"""


class ErpError(Exception):
    """ERP unreachable, timed out or rejected the request"""

    def __init__(self, message: str, status_code: int = None, response: dict = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response or {}
