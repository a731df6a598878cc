from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

class FileMetadata(BaseModel):
    """
    Stored object metadata as reported by the object store.
    """
    size: int
    type: Optional[str] = None
    lastModified: datetime
    originalName: str = Field(
        default="Unknown",
        description="Filename the uploader sent, 'Unknown' for objects stored by other means",
    )
    uploadedAt: datetime

class FileMetadataResponse(BaseModel):
    success: bool = True
    metadata: FileMetadata

class FileSummary(BaseModel):
    key: str
    size: int
    lastModified: datetime
    url: str

class FileListResponse(BaseModel):
    """Most recently modified objects first."""
    success: bool = True
    files: List[FileSummary]
