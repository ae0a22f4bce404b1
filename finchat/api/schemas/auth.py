from pydantic import BaseModel, Field


class Principal(BaseModel):
    user_id: str = Field(..., description="Canonical user id as string")
    email: str | None = Field(default=None, description="User email associated with the principal")
    display_name: str | None = Field(default=None, description="User-facing display name")
