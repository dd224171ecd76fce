from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class HandoffActivateRequest(BaseModel):
    number: str = Field(min_length=1)
    minutes: Optional[int] = Field(default=None, gt=0)
    activated_by: str = Field(
        default="admin-api",
        validation_alias=AliasChoices("activatedBy", "activated_by"),
    )


class HandoffEntryResponse(BaseModel):
    number: str
    activatedBy: str
    activatedAt: int
    expiresAt: int
    remainingMinutes: int


class HandoffListResponse(BaseModel):
    entries: list[HandoffEntryResponse]


class HandoffDeactivateResponse(BaseModel):
    number: str
    removed: bool
