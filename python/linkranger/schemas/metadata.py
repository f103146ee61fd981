"""Link metadata request schema."""

from linkranger.schemas.common import NonEmptyStr, RpcModel


class FetchMetadataRequest(RpcModel):
    url: NonEmptyStr
