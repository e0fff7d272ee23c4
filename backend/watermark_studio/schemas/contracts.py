from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProviderKind(str, Enum):
    FAL = "fal"
    LIGHTPDF = "lightpdf"
    WATERMARKREMOVER = "watermarkremover"
    RAPIDAPI = "rapidapi"
    CUSTOM = "custom"
    DEMO = "demo"


class ImageOrigin(str, Enum):
    UPLOADED = "uploaded"
    GALLERY = "gallery"
    SAMPLE = "sample"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImageTask(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    source_url: str
    filename: str
    origin: ImageOrigin


class ProcessingResult(ApiModel):
    original_url: str
    processed_url: str
    filename: str
    status: Literal["success", "error", "processing"]
    message: Optional[str] = None
    job_id: Optional[str] = None

    @classmethod
    def failed(cls, task: ImageTask, message: str) -> "ProcessingResult":
        return cls(
            original_url=task.source_url,
            processed_url=task.source_url,
            filename=task.filename,
            status="error",
            message=message,
        )


class ProgressSnapshot(ApiModel):
    total: int
    completed: int = 0
    current: str = ""
    status: Literal["processing", "completed", "error"] = "processing"
    results: List[ProcessingResult] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.monotonic, exclude=True)
    updated_at: float = Field(default_factory=time.monotonic, exclude=True)

    @property
    def is_terminal(self) -> bool:
        return self.status != "processing"


class RemovalResult(BaseModel):
    success: bool
    processed_image_url: Optional[str] = None
    error: Optional[str] = None
    job_id: Optional[str] = None
    message: Optional[str] = None
    retryable: bool = True


class GalleryImage(BaseModel):
    url: str
    filename: str
    thumbnail: Optional[str] = None


class ProcessResponse(ApiModel):
    results: List[ProcessingResult]
    session_id: str
    demo_mode: Optional[bool] = None


class ExtractGalleryRequest(ApiModel):
    gallery_url: str = ""


class ExtractGalleryResponse(BaseModel):
    images: List[GalleryImage]


class StatusResponse(ApiModel):
    demo_mode: bool
    api_configured: bool
    api_key_format: Literal["valid", "invalid"]
    provider: str
    message: str
    key_length: int
    key_prefix: Optional[str] = None
    storage_configured: bool = False
    sample_fallback_enabled: bool = True


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None


class ValidateKeyRequest(ApiModel):
    provider: str = ""
    api_key: str = ""
    endpoint: Optional[str] = None


class ValidateKeyResponse(ApiModel):
    valid: bool
