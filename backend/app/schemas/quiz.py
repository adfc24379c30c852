from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat, NonNegativeInt

from app.services.storage import UploadedFile


class QuizAnswer(BaseModel):
    answer_text: str
    is_correct: bool


class QuizQuestion(BaseModel):
    question_text: str
    question_image: str | None = None
    answers: list[QuizAnswer]


class QuizContent(BaseModel):
    score_per_question: int | float = 0
    is_question_randomized: bool = False
    is_answer_randomized: bool = False
    questions: list[QuizQuestion] = Field(default_factory=list)


class QuizQuestionInput(BaseModel):
    question_text: str
    # int: index into files_to_upload; str: existing asset reference to keep.
    question_image_array_index: int | str | None = None
    answers: list[QuizAnswer]


class QuizCreateInput(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    thumbnail_image: UploadedFile
    score_per_question: NonNegativeInt | NonNegativeFloat
    is_question_randomized: bool = False
    is_answer_randomized: bool = False
    is_publish_immediately: bool = False
    questions: list[QuizQuestionInput]
    files_to_upload: list[UploadedFile] | None = None


class QuizUpdateInput(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    thumbnail_image: UploadedFile | None = None
    score_per_question: NonNegativeInt | NonNegativeFloat | None = None
    is_question_randomized: bool | None = None
    is_answer_randomized: bool | None = None
    is_publish: bool | None = None
    questions: list[QuizQuestionInput] | None = None
    files_to_upload: list[UploadedFile] | None = None


class QuizCreateResponse(BaseModel):
    id: str


class QuizUpdateResponse(BaseModel):
    id: str
    warnings: list[dict[str, str]] = Field(default_factory=list)


class QuizDetailResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    thumbnail_image: str | None = None
    is_published: bool
    created_at: datetime | None = None
    game_json: QuizContent | None = None


class CheckAnswerItem(BaseModel):
    question_index: int
    selected_answer_index: int


class CheckAnswerRequest(BaseModel):
    answers: list[CheckAnswerItem]


class AnswerResult(BaseModel):
    question_index: int
    selected_answer_index: int
    is_correct: bool
    correct_answer_index: int
    selected_answer_text: str
    correct_answer_text: str
    error: str | None = None


class ScoreResult(BaseModel):
    game_id: str
    total_questions: int
    correct_answers: int
    incorrect_answers: int
    score: int | float
    max_score: int | float
    percentage: float
    results: list[AnswerResult]
