"""Tag generation request schemas."""

from linkranger.schemas.common import NonEmptyStr, RpcModel, UserScopedPayload


class GenerateTagsRequest(UserScopedPayload):
    """POST /generate-tags payload.

    user_plan is accepted for client compatibility; the server-side
    subscription plan always decides limits.
    """

    title: NonEmptyStr
    description: str | None = None
    url: NonEmptyStr
    user_plan: str | None = None


class LinkMetadataIn(RpcModel):
    url: NonEmptyStr
    title: NonEmptyStr
    description: str | None = None


class GenerateEnhancedTagsRequest(UserScopedPayload):
    """POST /generate-enhanced-tags payload."""

    metadata: LinkMetadataIn
    user_plan: str | None = None
