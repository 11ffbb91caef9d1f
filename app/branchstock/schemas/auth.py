from pydantic import BaseModel


class LoginRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "username_or_email": "jane@example.com",
                "password": "OldPass123",
            }
        }
    }

    username_or_email: str
    password: str


class TokenResponse(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "access_token": "<jwt>",
                "token_type": "bearer",
                "must_change_password": False,
                "trace_id": "trace-123",
            }
        }
    }

    access_token: str
    token_type: str = "bearer"
    must_change_password: bool
    trace_id: str
