from __future__ import annotations

import math
import uuid
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models.game import Game
from app.schemas.quiz import AnswerResult, CheckAnswerItem, CheckAnswerRequest, QuizContent, QuizQuestion, ScoreResult
from app.services.quiz_content import load_quiz_content


QUESTION_OUT_OF_RANGE = "Question index out of range"
ANSWER_OUT_OF_RANGE = "Answer index out of range"


def _round_half_up(value: float) -> float:
    # Two decimals, ties round up (3.125 -> 3.13); round() would go to even.
    return math.floor(value * 100 + 0.5) / 100


def _correct_answer(question: QuizQuestion) -> tuple[int, str]:
    for idx, answer in enumerate(question.answers):
        if answer.is_correct:
            return idx, answer.answer_text or "N/A"
    # Stored data anomaly: no correct answer configured.
    return -1, "N/A"


def _evaluate(content: QuizContent, item: CheckAnswerItem) -> AnswerResult:
    qi = item.question_index
    ai = item.selected_answer_index

    if qi < 0 or qi >= len(content.questions):
        return AnswerResult(
            question_index=qi,
            selected_answer_index=ai,
            is_correct=False,
            correct_answer_index=-1,
            selected_answer_text="Invalid question index",
            correct_answer_text="N/A",
            error=QUESTION_OUT_OF_RANGE,
        )

    question = content.questions[qi]
    if ai < 0 or ai >= len(question.answers):
        return AnswerResult(
            question_index=qi,
            selected_answer_index=ai,
            is_correct=False,
            correct_answer_index=-1,
            selected_answer_text="Invalid answer index",
            correct_answer_text="N/A",
            error=ANSWER_OUT_OF_RANGE,
        )

    selected = question.answers[ai]
    correct_index, correct_text = _correct_answer(question)
    return AnswerResult(
        question_index=qi,
        selected_answer_index=ai,
        is_correct=bool(selected.is_correct),
        correct_answer_index=correct_index,
        selected_answer_text=selected.answer_text,
        correct_answer_text=correct_text,
    )


def score_submission(content: QuizContent, answers: Sequence[CheckAnswerItem], *, game_id: str) -> ScoreResult:
    """Score answers against a content document.

    Each pair is judged on its own; an out-of-range index becomes a normal
    incorrect result entry carrying an `error` tag instead of failing the batch.
    """

    results = [_evaluate(content, item) for item in answers]
    correct = sum(1 for r in results if r.is_correct)

    total_questions = len(content.questions)
    score = correct * content.score_per_question
    max_score = total_questions * content.score_per_question
    percentage = _round_half_up((score / max_score) * 100) if max_score > 0 else 0

    return ScoreResult(
        game_id=game_id,
        total_questions=total_questions,
        correct_answers=correct,
        incorrect_answers=len(results) - correct,
        score=score,
        max_score=max_score,
        percentage=percentage,
        results=results,
    )


def check_answers(db: Session, game_id: uuid.UUID, data: CheckAnswerRequest) -> ScoreResult:
    game = db.scalar(select(Game).where(Game.id == game_id))
    if game is None:
        raise NotFound("Game not found")

    content = load_quiz_content(game.game_json) or QuizContent()
    return score_submission(content, data.answers, game_id=str(game.id))
