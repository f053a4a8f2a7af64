from fastapi import Header


# Authentication happens upstream; requests arrive already scoped to a tenant
def get_tenant_id(
    x_tenant_id: int = Header(..., alias="X-Tenant-Id", description="Tenant scope"),
) -> int:
    return x_tenant_id
