"""Wire and domain shapes for the clarification workflow."""
from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

MAX_QUESTIONS = 3


class QuestionOption(BaseModel):
    id: str
    label: str
    value: str


class ClarificationQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    options: List[QuestionOption] = Field(..., min_length=1)

    def option_value(self, option_id: str) -> Optional[str]:
        for opt in self.options:
            if opt.id == option_id:
                return opt.value
        return None


class ClarificationResponse(BaseModel):
    questions: List[ClarificationQuestion]

    @model_validator(mode="after")
    def _unique_ids(self) -> "ClarificationResponse":
        ids = [q.id for q in self.questions]
        if len(ids) != len(set(ids)):
            raise ValueError("question ids must be unique")
        return self


class QAPair(BaseModel):
    question: str
    answer: str


class ActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    input: str
    qa_pairs: List[QAPair] = Field(default_factory=list, alias="qaPairs")
    api_key: Optional[str] = Field(default=None, alias="apiKey")


class ErrorResponse(BaseModel):
    message: str
    error: Optional[str] = None
