from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from lab_inventory.db.base import Base


InchargeDepartments = Table(
    "InchargeDepartments",
    Base.metadata,
    Column("UserID", Integer, ForeignKey("Users.UserID"), primary_key=True),
    Column("DepartmentID", Integer, ForeignKey("Departments.DepartmentID"), primary_key=True),
)


class Department(Base):
    __tablename__ = "Departments"

    DepartmentID = Column(Integer, primary_key=True)
    Code = Column(String(20), nullable=False, unique=True)
    Name = Column(String(255), nullable=False)
    CreatedDate = Column(DateTime, server_default=func.now())

    Items = relationship("Item", back_populates="Department", foreign_keys="Item.DepartmentID")
    Incharges = relationship("User", secondary=InchargeDepartments, back_populates="Departments")


class Category(Base):
    __tablename__ = "Categories"

    CategoryID = Column(Integer, primary_key=True)
    Name = Column(String(100), nullable=False, unique=True)
    Description = Column(String(500))
    MaxBorrowDuration = Column(Integer, nullable=False, default=7)
    CreatedDate = Column(DateTime, server_default=func.now())

    Items = relationship("Item", back_populates="Category")


class User(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Email = Column(String(255), nullable=False, unique=True)
    Role = Column(String(20), nullable=False, default="STUDENT")
    IsApproved = Column(Boolean, nullable=False, default=False)
    IsActive = Column(Boolean, nullable=False, default=True)
    IsBanned = Column(Boolean, nullable=False, default=False)
    BannedUntil = Column(DateTime)
    PasswordHash = Column(String(256))
    PasswordSalt = Column(String(64))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Departments = relationship("Department", secondary=InchargeDepartments, back_populates="Incharges")
    IssueRequests = relationship("IssueRequest", back_populates="User", foreign_keys="IssueRequest.UserID")
    IssueRecords = relationship("IssueRecord", back_populates="User", foreign_keys="IssueRecord.UserID")


class Item(Base):
    __tablename__ = "Items"

    ItemID = Column(Integer, primary_key=True)
    ManualID = Column(String(50), nullable=False, unique=True)
    Name = Column(String(255), nullable=False)
    CategoryID = Column(Integer, ForeignKey("Categories.CategoryID"), nullable=False)
    DepartmentID = Column(Integer, ForeignKey("Departments.DepartmentID"), nullable=False)
    SourceDepartmentID = Column(Integer, ForeignKey("Departments.DepartmentID"))
    Status = Column(String(30), nullable=False, default="AVAILABLE")
    Condition = Column(String(30), nullable=False, default="GOOD")
    IsConsumable = Column(Boolean, nullable=False, default=False)
    CurrentStock = Column(Integer)
    MinStockLevel = Column(Integer)
    Description = Column(String(1000))
    Location = Column(String(255))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Category = relationship("Category", back_populates="Items")
    Department = relationship("Department", back_populates="Items", foreign_keys=[DepartmentID])
    SourceDepartment = relationship("Department", foreign_keys=[SourceDepartmentID])
    DepartmentAccess = relationship("ItemDepartmentAccess", back_populates="Item", cascade="all, delete-orphan")


class ItemDepartmentAccess(Base):
    __tablename__ = "ItemDepartmentAccess"

    AccessID = Column(Integer, primary_key=True)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    DepartmentID = Column(Integer, ForeignKey("Departments.DepartmentID"), nullable=False)
    CanTransfer = Column(Boolean, nullable=False, default=True)

    Item = relationship("Item", back_populates="DepartmentAccess")
    Department = relationship("Department")


class IssueRequest(Base):
    __tablename__ = "IssueRequests"

    RequestID = Column(Integer, primary_key=True)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    Purpose = Column(String(1000), nullable=False)
    RequestedDays = Column(Integer, nullable=False)
    Status = Column(String(20), nullable=False, default="PENDING")
    RequestDate = Column(DateTime, nullable=False)
    ApprovalDate = Column(DateTime)
    ApprovedBy = Column(Integer, ForeignKey("Users.UserID"))
    CollectionInstructions = Column(String(1000))
    RejectionReason = Column(String(1000))

    User = relationship("User", back_populates="IssueRequests", foreign_keys=[UserID])
    Approver = relationship("User", foreign_keys=[ApprovedBy])
    Item = relationship("Item")
    IssueRecord = relationship("IssueRecord", back_populates="Request", uselist=False)


class IssueRecord(Base):
    __tablename__ = "IssueRecords"

    IssueRecordID = Column(Integer, primary_key=True)
    RequestID = Column(Integer, ForeignKey("IssueRequests.RequestID"), nullable=False, unique=True)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    DepartmentID = Column(Integer, ForeignKey("Departments.DepartmentID"), nullable=False)
    IssuedBy = Column(Integer, ForeignKey("Users.UserID"))
    IssueDate = Column(DateTime, nullable=False)
    ExpectedReturnDate = Column(DateTime, nullable=False)
    ActualReturnDate = Column(DateTime)
    ReturnCondition = Column(String(30))
    DamageRemarks = Column(String(1000))
    IsPendingReplacement = Column(Boolean, nullable=False, default=False)
    Reminder3DaysSent = Column(Boolean, nullable=False, default=False)
    Reminder1DaySent = Column(Boolean, nullable=False, default=False)
    OverdueSent = Column(Boolean, nullable=False, default=False)

    Request = relationship("IssueRequest", back_populates="IssueRecord")
    User = relationship("User", back_populates="IssueRecords", foreign_keys=[UserID])
    Item = relationship("Item")
    Department = relationship("Department")


class TransferRequest(Base):
    __tablename__ = "TransferRequests"

    TransferRequestID = Column(Integer, primary_key=True)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    FromDepartmentID = Column(Integer, ForeignKey("Departments.DepartmentID"), nullable=False)
    ToDepartmentID = Column(Integer, ForeignKey("Departments.DepartmentID"), nullable=False)
    RequestedBy = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    ApprovedBy = Column(Integer, ForeignKey("Users.UserID"))
    Quantity = Column(Integer, nullable=False, default=1)
    Purpose = Column(String(1000), nullable=False)
    Status = Column(String(20), nullable=False, default="PENDING")
    RequestDate = Column(DateTime, nullable=False)
    ApprovalDate = Column(DateTime)
    RejectionReason = Column(String(1000))

    Item = relationship("Item")
    FromDepartment = relationship("Department", foreign_keys=[FromDepartmentID])
    ToDepartment = relationship("Department", foreign_keys=[ToDepartmentID])
    Requester = relationship("User", foreign_keys=[RequestedBy])


class TransferRecord(Base):
    __tablename__ = "TransferRecords"

    TransferRecordID = Column(Integer, primary_key=True)
    TransferRequestID = Column(Integer, ForeignKey("TransferRequests.TransferRequestID"), nullable=False, unique=True)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    FromDepartmentID = Column(Integer, ForeignKey("Departments.DepartmentID"), nullable=False)
    ToDepartmentID = Column(Integer, ForeignKey("Departments.DepartmentID"), nullable=False)
    TransferredBy = Column(Integer, ForeignKey("Users.UserID"))
    Quantity = Column(Integer, nullable=False, default=1)
    Notes = Column(String(1000))
    TransferDate = Column(DateTime, nullable=False)


class Setting(Base):
    __tablename__ = "Settings"

    Key = Column(String(100), primary_key=True)
    Value = Column(String(1000), nullable=False)
    Description = Column(String(500))
    UpdatedDate = Column(DateTime, server_default=func.now())


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    UserID = Column(Integer)
    Action = Column(String(100), nullable=False)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer)
    Changes = Column(Text)
    CreatedAt = Column(DateTime, server_default=func.now())
