from typing import Optional

from pydantic import BaseModel, ConfigDict


class CreateRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemId: Optional[int] = None
    purpose: Optional[str] = None
    requestedDays: Optional[int] = None


class ApproveRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    collectionInstructions: Optional[str] = None


class RejectRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rejectionReason: Optional[str] = None


class IssueRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    requestId: int
