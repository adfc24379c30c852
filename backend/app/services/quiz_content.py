from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Union

from app.schemas.quiz import QuizContent, QuizQuestion, QuizQuestionInput


@dataclass(frozen=True)
class NewUpload:
    index: int


@dataclass(frozen=True)
class ExistingReference:
    reference: str


ImageSlot = Union[NewUpload, ExistingReference, None]


def image_slot(raw: Any) -> ImageSlot:
    """Classify the polymorphic `question_image_array_index` input value."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return NewUpload(raw)
    if isinstance(raw, str):
        return ExistingReference(raw)
    return None


def resolve_question_image(slot: ImageSlot, uploaded_refs: Sequence[str]) -> str | None:
    if isinstance(slot, NewUpload):
        if 0 <= slot.index < len(uploaded_refs):
            return uploaded_refs[slot.index]
        return None
    if isinstance(slot, ExistingReference):
        return slot.reference
    return None


def load_quiz_content(raw: dict | None) -> QuizContent | None:
    if not raw:
        return None
    return QuizContent.model_validate(raw)


def _pick(new, old, default):
    if new is not None:
        return new
    if old is not None:
        return old
    return default


def build_quiz_content(
    *,
    questions: Sequence[QuizQuestionInput] | None,
    uploaded_refs: Sequence[str] = (),
    previous: QuizContent | None = None,
    score_per_question: int | float | None = None,
    is_question_randomized: bool | None = None,
    is_answer_randomized: bool | None = None,
) -> QuizContent:
    if questions is None:
        built = [q.model_copy(deep=True) for q in (previous.questions if previous else [])]
    else:
        built = [
            QuizQuestion(
                question_text=q.question_text,
                question_image=resolve_question_image(image_slot(q.question_image_array_index), uploaded_refs),
                answers=[a.model_copy() for a in q.answers],
            )
            for q in questions
        ]

    return QuizContent(
        score_per_question=_pick(score_per_question, previous.score_per_question if previous else None, 0),
        is_question_randomized=_pick(
            is_question_randomized, previous.is_question_randomized if previous else None, False
        ),
        is_answer_randomized=_pick(is_answer_randomized, previous.is_answer_randomized if previous else None, False),
        questions=built,
    )


def collect_asset_refs(content: QuizContent | None, thumbnail: str | None) -> set[str]:
    refs: set[str] = set()
    if thumbnail:
        refs.add(thumbnail)
    if content is not None:
        for q in content.questions:
            if q.question_image:
                refs.add(q.question_image)
    return refs
