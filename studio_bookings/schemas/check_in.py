from pydantic import BaseModel, Field


class QRCheckInRequest(BaseModel):
    token: str = Field(min_length=1)


class TokenRequest(BaseModel):
    member_id: int = Field(ge=1)
    session_id: int = Field(ge=1)


class TokenOut(BaseModel):
    token: str
