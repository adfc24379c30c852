from __future__ import annotations

from collections.abc import Sequence

from app.core.errors import ValidationError
from app.schemas.quiz import QuizQuestionInput
from app.services.quiz_content import NewUpload, image_slot


def validate_questions(questions: Sequence[QuizQuestionInput], files_count: int | None = None) -> None:
    """Authoring checks that must pass before anything is uploaded.

    - every question has exactly one correct answer;
    - when files were supplied, the questions pointing at an upload by index
      use every uploaded file exactly once.
    """

    upload_indexes: list[tuple[int, int]] = []

    for number, question in enumerate(questions, start=1):
        correct = [a for a in question.answers if a.is_correct is True]
        if len(correct) != 1:
            raise ValidationError(f"There should be 1 correct answer in question no. {number}")

        slot = image_slot(question.question_image_array_index)
        if isinstance(slot, NewUpload):
            upload_indexes.append((number, slot.index))

    if files_count is None:
        return

    if len(upload_indexes) != files_count:
        raise ValidationError("all uploaded files must be used")

    for number, index in upload_indexes:
        if index < 0 or index >= files_count:
            raise ValidationError(f"Question no. {number} references a missing uploaded file ({index})")

    if len({index for _, index in upload_indexes}) != files_count:
        raise ValidationError("all uploaded files must be used")
