"""AI analysis request schema."""

from linkranger.schemas.common import NonEmptyStr, UserScopedPayload


class GenerateAnalysisRequest(UserScopedPayload):
    title: NonEmptyStr
    analysis_prompt: NonEmptyStr
