from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    """Identity of the caller, resolved upstream and trusted as-is."""

    tenant_id: str
    session_id: str
    actor_id: str
