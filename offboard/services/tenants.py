"""Directory credentials per tenant."""

from sqlalchemy.ext.asyncio import AsyncSession

from offboard.core.logging import get_logger
from offboard.core.security import encrypt_secret
from offboard.models.tenant import TenantCredential

logger = get_logger(__name__)


async def register_tenant_credentials(
    db: AsyncSession,
    tenant_id: str,
    directory_tenant_id: str,
    client_id: str,
    client_secret: str,
) -> TenantCredential:
    """Create or replace the app registration used to act on a tenant's directory.

    The client secret is stored encrypted.

    Raises:
        CredentialEncryptionError: No usable encryption key is configured
    """
    encrypted = encrypt_secret(client_secret)

    credential = await db.get(TenantCredential, tenant_id)
    if credential is None:
        credential = TenantCredential(tenant_id=tenant_id)
        db.add(credential)

    credential.directory_tenant_id = directory_tenant_id
    credential.client_id = client_id
    credential.client_secret_encrypted = encrypted
    await db.flush()

    # Never log the secret
    logger.bind(tenant_id=tenant_id, directory_tenant_id=directory_tenant_id, client_id=client_id).info(
        "tenant_credentials_registered"
    )
    return credential
