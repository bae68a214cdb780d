from typing import Optional

from pydantic import BaseModel, ConfigDict


class CreateTransferDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemId: Optional[int] = None
    toDepartmentId: Optional[int] = None
    purpose: Optional[str] = None
    quantity: Optional[int] = None


class RejectTransferDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rejectionReason: Optional[str] = None


class CompleteTransferDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notes: Optional[str] = None
