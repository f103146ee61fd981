"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from linkranger.schemas.analysis import GenerateAnalysisRequest
from linkranger.schemas.common import DataRequest, EmptyPayload, RpcModel, UserScopedPayload
from linkranger.schemas.links import ShareLinkRequest
from linkranger.schemas.metadata import FetchMetadataRequest
from linkranger.schemas.tags import (
    GenerateEnhancedTagsRequest,
    GenerateTagsRequest,
    LinkMetadataIn,
)
from linkranger.schemas.usage import CheckUsageRequest, RecordUsageRequest

__all__ = [
    "CheckUsageRequest",
    "DataRequest",
    "EmptyPayload",
    "FetchMetadataRequest",
    "GenerateAnalysisRequest",
    "GenerateEnhancedTagsRequest",
    "GenerateTagsRequest",
    "LinkMetadataIn",
    "RecordUsageRequest",
    "RpcModel",
    "ShareLinkRequest",
    "UserScopedPayload",
]
