# vendorhub/errors.py
from __future__ import annotations


class VendorHubError(Exception):
    """Base class for errors raised by the middleware."""


class ConfigurationError(VendorHubError):
    """Required configuration is missing or inconsistent (raised at startup)."""


class JobStoreError(VendorHubError):
    """The job store could not be reached or rejected an operation."""


class JobExecutionError(VendorHubError):
    """A job's business logic failed; recorded against the job, never raised to HTTP callers."""


class WebhookProcessingError(JobExecutionError):
    pass


class ShipmentImportError(JobExecutionError):
    pass


class ShopifyAPIError(VendorHubError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
