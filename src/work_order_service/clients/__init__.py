"""HTTP clients for external collaborators."""

from work_order_service.clients.identity_client import IdentityClient
from work_order_service.clients.notification_client import NotificationClient
from work_order_service.clients.upload_client import UploadClient

__all__ = ["IdentityClient", "NotificationClient", "UploadClient"]
