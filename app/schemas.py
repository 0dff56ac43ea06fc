from pydantic import BaseModel, ConfigDict


class ItemOut(BaseModel):
    code: str
    kind: str
    value: str
    created_at: int

    model_config = ConfigDict(from_attributes=True)

class PaginatedItems(BaseModel):
    items: list[ItemOut]
    total: int
    skip: int
    limit: int

class SubmitResult(BaseModel):
    success: bool = True
    code: str
    short_url: str
    qr_code_data: str | None = None

class QrOut(BaseModel):
    qr_base64: str
    qr_svg: str

class MessageOut(BaseModel):
    ok: bool
    detail: str
    file_removed: bool | None = None

class ErrorOut(BaseModel):
    success: bool = False
    error: str
