from __future__ import annotations

from pydantic import BaseModel


class WarningRead(BaseModel):
    kind: str
    message: str

    class Config:
        from_attributes = True


class OkResponse(BaseModel):
    ok: bool = True
