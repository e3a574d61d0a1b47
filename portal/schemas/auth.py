from pydantic import BaseModel
from typing import Optional

class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    login_code: Optional[str] = None
    is_agent: bool = False

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    user: dict

class TimezoneIn(BaseModel):
    timezone: str
