from typing import Dict
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated caller: user id, owning school (tenant) and role with per-module permissions.
    tenant_id scopes every ledger and promo-code query and is stamped on created_by / collected_by writes.
    """

    id: UUID
    tenant_id: UUID
    role: str
    permissions: Dict[str, Dict[str, bool]]
