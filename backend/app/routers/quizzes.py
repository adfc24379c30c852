from __future__ import annotations

import json
import uuid

import pydantic
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.core.security import get_current_user
from app.core.security_audit_log import audit_log
from app.db.session import get_db
from app.models.user import User
from app.schemas.quiz import (
    CheckAnswerRequest,
    QuizCreateInput,
    QuizCreateResponse,
    QuizDetailResponse,
    QuizQuestionInput,
    QuizUpdateInput,
    QuizUpdateResponse,
    ScoreResult,
)
from app.services.quiz_scoring import check_answers
from app.services.quiz_service import QuizService
from app.services.storage import AssetStore, UploadedFile, get_asset_store

router = APIRouter(prefix="/game/game-type/quiz", tags=["quiz"])

_questions_adapter = pydantic.TypeAdapter(list[QuizQuestionInput])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


def _read_upload(file: UploadFile | None) -> UploadedFile | None:
    if file is None or not (file.filename or "").strip():
        return None
    try:
        file.file.seek(0)
    except Exception:
        pass
    return UploadedFile(filename=str(file.filename), content=file.file.read(), content_type=file.content_type)


def _read_uploads(files: list[UploadFile] | None) -> list[UploadedFile] | None:
    if files is None:
        return None
    uploads: list[UploadedFile] = []
    for position, file in enumerate(files):
        upload = _read_upload(file)
        # Numeric image indices point into this list, so a part cannot be skipped.
        if upload is None:
            raise HTTPException(status_code=422, detail=f"files_to_upload[{position}] has no filename")
        uploads.append(upload)
    return uploads


def _parse_questions(raw: str | None) -> list[QuizQuestionInput] | None:
    if raw is None:
        return None
    try:
        return _questions_adapter.validate_python(json.loads(raw))
    except (ValueError, pydantic.ValidationError) as e:
        raise HTTPException(status_code=422, detail="invalid questions payload") from e


def _build_input(model: type[pydantic.BaseModel], payload: dict):
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        first = (e.errors() or [{}])[0]
        loc = ".".join(str(x) for x in first.get("loc", ()))
        raise HTTPException(status_code=422, detail=f"invalid {loc or 'input'}: {first.get('msg', 'invalid value')}") from e


@router.post("", response_model=QuizCreateResponse, status_code=201)
def create_quiz(
    request: Request,
    name: str = Form(...),
    description: str | None = Form(None),
    thumbnail_image: UploadFile = File(...),
    score_per_question: str = Form(...),
    is_question_randomized: bool = Form(False),
    is_answer_randomized: bool = Form(False),
    is_publish_immediately: bool = Form(False),
    questions: str = Form(...),
    files_to_upload: list[UploadFile] | None = File(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    assets: AssetStore = Depends(get_asset_store),
):
    thumbnail = _read_upload(thumbnail_image)
    if thumbnail is None:
        raise HTTPException(status_code=422, detail="thumbnail_image is required")

    data = _build_input(
        QuizCreateInput,
        {
            "name": name,
            "description": description,
            "thumbnail_image": thumbnail,
            "score_per_question": score_per_question,
            "is_question_randomized": is_question_randomized,
            "is_answer_randomized": is_answer_randomized,
            "is_publish_immediately": is_publish_immediately,
            "questions": _parse_questions(questions),
            "files_to_upload": _read_uploads(files_to_upload),
        },
    )

    result = QuizService(db, assets).create_quiz(data, user.id)

    audit_log(
        db=db,
        request=request,
        event_type="quiz_created",
        actor_user_id=user.id,
        game_id=uuid.UUID(result.id),
        meta={"name": data.name, "questions": len(data.questions)},
    )
    db.commit()
    return result


@router.get("/{game_id}", response_model=QuizDetailResponse)
def get_quiz_detail(
    game_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    assets: AssetStore = Depends(get_asset_store),
):
    gid = _uuid(game_id, field="game id")
    return QuizService(db, assets).get_quiz_detail(gid, user.id, user.role)


@router.patch("/{game_id}", response_model=QuizUpdateResponse)
def update_quiz(
    request: Request,
    game_id: str,
    name: str | None = Form(None),
    description: str | None = Form(None),
    thumbnail_image: UploadFile | None = File(None),
    score_per_question: str | None = Form(None),
    is_question_randomized: bool | None = Form(None),
    is_answer_randomized: bool | None = Form(None),
    is_publish: bool | None = Form(None),
    questions: str | None = Form(None),
    files_to_upload: list[UploadFile] | None = File(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    assets: AssetStore = Depends(get_asset_store),
):
    gid = _uuid(game_id, field="game id")

    data = _build_input(
        QuizUpdateInput,
        {
            "name": name,
            "description": description,
            "thumbnail_image": _read_upload(thumbnail_image),
            "score_per_question": score_per_question,
            "is_question_randomized": is_question_randomized,
            "is_answer_randomized": is_answer_randomized,
            "is_publish": is_publish,
            "questions": _parse_questions(questions),
            "files_to_upload": _read_uploads(files_to_upload),
        },
    )

    result = QuizService(db, assets).update_quiz(data, gid, user.id, user.role)

    audit_log(
        db=db,
        request=request,
        event_type="quiz_updated",
        actor_user_id=user.id,
        game_id=gid,
        meta={"fields": sorted(k for k, v in data.model_dump(exclude={"thumbnail_image", "files_to_upload"}).items() if v is not None)},
    )
    for warning in result.warnings:
        audit_log(
            db=db,
            request=request,
            event_type="quiz_asset_cleanup_failed",
            actor_user_id=user.id,
            game_id=gid,
            meta=warning,
        )
    db.commit()
    return result


@router.post("/{game_id}/check", response_model=ScoreResult, response_model_exclude_none=True)
def check_quiz_answers(
    game_id: str,
    body: CheckAnswerRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(
        key_prefix="quiz_check_answer",
        limit=settings.check_answer_rate_limit,
        window_seconds=settings.check_answer_rate_window_seconds,
    ),
):
    gid = _uuid(game_id, field="game id")
    return check_answers(db, gid, body)
