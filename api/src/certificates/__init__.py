"""Certificate collaborator interface."""

from .notifier import (
    CertificateNotifier,
    CertificateNotifierError,
    CourseCompletedEvent,
    LoggingCertificateNotifier,
    WebhookCertificateNotifier,
)


__all__ = [
    "CertificateNotifier",
    "CertificateNotifierError",
    "CourseCompletedEvent",
    "LoggingCertificateNotifier",
    "WebhookCertificateNotifier",
]
