from pydantic import BaseModel, ConfigDict, Field


class ExecutionLogMessage(BaseModel):
    """Queue message sent once an execution log has been archived.

    Serialized with camelCase keys (``tenantId`` ...), accepts either form.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tenant_id: int = Field(..., alias="tenantId")
    project_id: int = Field(..., alias="projectId")
    prompt_id: int = Field(..., alias="promptId")
    version: int = Field(..., alias="version")
    log_id: int = Field(..., alias="logId")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)
