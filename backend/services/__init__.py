from .errors import NotFoundError, StorageError, ValidationError, VideoPipelineError
from .gcs import StorageGateway, generate_signed_url

__all__ = [
    "StorageGateway",
    "generate_signed_url",
    "VideoPipelineError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
]
