from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AuthUser(BaseModel):
    """
    Represents an authenticated user from a Supabase access token.
    """

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_service_role(self) -> bool:
        return self.role == "service_role"
