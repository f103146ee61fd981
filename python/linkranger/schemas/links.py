"""Shared link request schema."""

from linkranger.schemas.common import NonEmptyStr, RpcModel


class ShareLinkRequest(RpcModel):
    url: NonEmptyStr
    title: str | None = None
    source: str | None = None
