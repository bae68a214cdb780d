from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class DepartmentUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    code: str
    name: str


class CategoryUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    description: Optional[str] = None
    maxBorrowDuration: int = 7


class ItemUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    categoryId: int
    departmentId: int
    condition: str = "GOOD"
    isConsumable: bool = False
    currentStock: Optional[int] = None
    minStockLevel: Optional[int] = None
    description: Optional[str] = None
    location: Optional[str] = None
    transferDepartmentIds: List[int] = []


class CreateUserDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    email: str
    role: str = "STUDENT"
    password: Optional[str] = None
    isApproved: bool = False
    departmentIds: List[int] = []


class UserStatusDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    isActive: bool


class DepartmentUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    code: Optional[str] = None
    name: Optional[str] = None


class InchargeAssignmentDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    inchargeIds: List[int] = []


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = None
    maxBorrowDuration: Optional[int] = None


class ItemUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    categoryId: Optional[int] = None
    condition: Optional[str] = None
    status: Optional[str] = None
    currentStock: Optional[int] = None
    minStockLevel: Optional[int] = None
    description: Optional[str] = None
    location: Optional[str] = None


class UserRoleDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    role: str
