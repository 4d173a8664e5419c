"""Webhook payload schemas for dispatch deliveries."""

from typing import List, Literal

from pydantic import BaseModel, Field

ModelName = Literal["ChatGPT", "Claude", "Gemini"]
StageName = Literal["TOFU", "MOFU", "BOFU", "EVFU"]


class PairPayload(BaseModel):
    model: ModelName
    stage: StageName


class ProcessAnalysisPayload(BaseModel):
    """Delivery of one pair to the task runner."""

    run_id: str = Field(min_length=1)
    current_pair: PairPayload
    remaining_pairs: List[PairPayload] = []


class ResumeAnalysisPayload(BaseModel):
    """Request to resume a run from its first incomplete pair."""

    run_id: str = Field(min_length=1)


class WebhookResponse(BaseModel):
    success: bool
    message: str
    run_id: str
    outcome: str = ""
