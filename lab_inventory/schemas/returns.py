from typing import Optional

from pydantic import BaseModel, ConfigDict


class ReturnRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    issueRecordId: Optional[int] = None
    returnCondition: Optional[str] = None
    damageRemarks: Optional[str] = None
    isPendingReplacement: bool = False
