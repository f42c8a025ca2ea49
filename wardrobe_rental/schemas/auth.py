from typing import Optional

from pydantic import BaseModel, ConfigDict


class AuthLoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = None
    password: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    currentPassword: str
    newPassword: str
