"""Certificate number issuance.

Numbers are opaque to the rest of the engine; PDF rendering and delivery
happen downstream.
"""

import secrets
import uuid
from datetime import datetime
from typing import Optional

from libs.common.config import get_settings


class CertificateIssuer:
    """Issues certificate numbers such as ``YC-2026-9F3A1C07``."""

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix or get_settings().CERTIFICATE_PREFIX

    def issue(self, enrollment_id: uuid.UUID, now: datetime) -> str:
        return f"{self.prefix}-{now.year}-{secrets.token_hex(4).upper()}"


def get_certificate_issuer() -> CertificateIssuer:
    return CertificateIssuer()
