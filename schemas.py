from pydantic import BaseModel


class UploadResult(BaseModel):
    success: bool
    message: str


class Health(BaseModel):
    status: str
    service: str
    version: str
    storage: str
    live_keys: int
    stored_files: int
