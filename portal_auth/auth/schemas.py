from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, description="User email")
    password: str = Field(..., min_length=8, description="Account password")


class UserLogin(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: str
    email: str
    is_active: bool
    has_two_factor_enabled: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    """Result of the password step."""
    session_token: str = Field(..., description="Bearer token for this session")
    requires_two_factor: bool = Field(..., description="Whether /2fa/verify must be called before the token is usable")
    two_factor_complete: bool
    expires_at: datetime
    user: UserResponse

    class Config:
        json_schema_extra = {
            "example": {
                "session_token": "k3V2...",
                "requires_two_factor": True,
                "two_factor_complete": False,
                "expires_at": "2024-01-15T10:40:00Z",
                "user": {
                    "id": "9a0c4d1e-...",
                    "email": "borrower@example.com",
                    "is_active": True,
                    "has_two_factor_enabled": True,
                    "created_at": "2024-01-01T08:00:00Z"
                }
            }
        }
