from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class MappingIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path: str | None = None
    target: str | None = None
    name: str | None = None
    expiry: str | None = None
    enabled: bool = True
    is_wechat: bool = Field(default=False, alias="isWechat")
    qr_code_data: str | None = Field(default=None, alias="qrCodeData")

class MappingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    path: str
    target: str
    name: str | None
    expiry: datetime | None
    enabled: bool
    is_wechat: bool = Field(serialization_alias="isWechat")
    qr_code_data: str | None = Field(serialization_alias="qrCodeData")
    created_at: datetime = Field(serialization_alias="createdAt")

class MappingPageOut(BaseModel):
    mappings: list[MappingOut]
    total: int
    page: int
    page_size: int = Field(serialization_alias="pageSize")
    total_pages: int = Field(serialization_alias="totalPages")

class ExpiringOut(BaseModel):
    expired: list[MappingOut]
    expiring: list[MappingOut]

class ImportReportOut(BaseModel):
    success: bool = True
    imported: int
    skipped: int
    failed: dict[str, str]

class CleanupOut(BaseModel):
    success: bool = True
    deleted: int

class LoginRequest(BaseModel):
    password: str = ""

class AckResponse(BaseModel):
    success: bool = True
