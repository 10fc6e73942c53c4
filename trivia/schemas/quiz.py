from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

QuizCategory = Literal["characters", "weapons", "artifacts", "lore", "gameplay"]
QuizDifficulty = Literal["easy", "medium", "hard"]
QuestionType = Literal["multiple_choice", "true_false", "fill_in_blank"]


class QuestionCreate(BaseModel):
    question_text: str = Field(min_length=1, max_length=500)
    question_type: QuestionType
    options: list[str] | None = None
    correct_answer: str = Field(min_length=1)
    explanation: str | None = Field(default=None, max_length=1000)
    points: int = Field(ge=1, le=100)
    order_index: int = Field(ge=1)

    @model_validator(mode="after")
    def _validate_options(self) -> "QuestionCreate":
        if self.question_type == "multiple_choice":
            if not self.options or len(self.options) < 2:
                raise ValueError("multiple_choice questions need at least two options")
            if self.correct_answer not in self.options:
                raise ValueError("correct_answer must be one of options")
        if self.question_type == "true_false" and self.correct_answer.lower() not in ("true", "false"):
            raise ValueError("true_false questions must have correct_answer true or false")
        return self


class QuizCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    category: QuizCategory
    difficulty: QuizDifficulty
    questions: list[QuestionCreate] = Field(min_length=1)
    time_limit: int | None = Field(default=None, ge=30, le=3600)
    created_by: int = Field(gt=0)

    @model_validator(mode="after")
    def _unique_order(self) -> "QuizCreate":
        seen = [q.order_index for q in self.questions]
        if len(seen) != len(set(seen)):
            raise ValueError("question order_index values must be unique")
        return self
