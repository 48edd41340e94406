import uuid
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class OperationType(str, Enum):
    SKETCH_TO_PRODUCT = "sketch-to-product"
    INSPIRATION_TO_PRODUCT = "inspiration-to-product"
    PRODUCT_TO_CATALOGUE = "product-to-catalogue"
    CATALOGUE_TO_VIDEO = "catalogue-to-video"

    @classmethod
    def parse(cls, raw: str) -> "OperationType | None":
        try:
            return cls(raw)
        except ValueError:
            return None


class StoredAsset(BaseModel):
    id: uuid.UUID
    original_filename: str
    storage_path: Path
    public_path: str

    @property
    def filename(self) -> str:
        return self.storage_path.name


class GenerationRequest(BaseModel):
    source: StoredAsset
    operation: OperationType
    with_model: bool = False


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationResult(CamelModel):
    success: bool = True
    original_image: str
    result_image: str | None = None
    video_url: str | None = None
    mock_data: bool | None = None
    rate_limited: bool | None = None
    error: str | None = None
    with_model: bool | None = None


class StatusResponse(CamelModel):
    status: str
    result_image: str


class UploadEchoResponse(CamelModel):
    success: bool = True
    file_url: str
    file_name: str
    file_size: int
    file_type: str


class ProbeResponse(CamelModel):
    success: bool
    message: str | None = None
    model: str | None = None
    test_image: str | None = None
    mock_data: bool | None = None
    save_error: str | None = None
    error: str | None = None
    details: str | None = None
    api_key_provided: bool | None = None
    mock_available: bool | None = None
    mock_url: str | None = None
