"""Per-tenant application credentials for the directory API."""

from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from offboard.core.datetime_utils import utc_now
from offboard.models.base import Base, TimestampMixin


class TenantCredential(Base, TimestampMixin):
    """App registration used for the client-credentials grant."""

    __tablename__ = "tenant_credentials"

    tenant_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    directory_tenant_id: Mapped[str] = mapped_column(String(255))
    client_id: Mapped[str] = mapped_column(String(255))
    # Fernet token, see offboard.core.security
    client_secret_encrypted: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    def __repr__(self) -> str:
        return f"<TenantCredential {self.tenant_id}>"
