from datetime import datetime
from pydantic import BaseModel, Field

class UploadMetadata(BaseModel):
    originalName: str
    mimeType: str
    size: int = Field(ge=0)
    uploadedAt: datetime
    uploadedBy: str = "anonymous"

class UploadResponse(BaseModel):
    """Body for a successful POST /api/upload"""
    success: bool = True
    message: str = "File uploaded successfully"
    fileUrl: str
    fileKey: str
    metadata: UploadMetadata

class HealthResponse(BaseModel):
    success: bool = True
    message: str = "Server is running"
    timestamp: datetime
