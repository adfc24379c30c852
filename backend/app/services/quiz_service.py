from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Conflict, Forbidden, NotFound
from app.models.game import Game, GameTemplate
from app.models.user import UserRole
from app.schemas.quiz import (
    QuizCreateInput,
    QuizCreateResponse,
    QuizDetailResponse,
    QuizUpdateInput,
    QuizUpdateResponse,
)
from app.services.asset_reconciler import reconcile_assets
from app.services.quiz_content import build_quiz_content, collect_asset_refs, load_quiz_content
from app.services.quiz_validation import validate_questions
from app.services.storage import AssetStore, UploadedFile


log = logging.getLogger(__name__)


def can_manage(game: Game, *, user_id: uuid.UUID, user_role: UserRole) -> bool:
    return user_role == UserRole.super_admin or game.creator_id == user_id


class QuizService:
    """Authoring operations for quiz games.

    Every mutating call runs the same fixed sequence of stages:
    validate -> upload -> build -> persist -> (update only) reconcile.
    A stage raises a domain error to stop the ones after it, so nothing is
    uploaded for an invalid submission and nothing is cleaned up unless the
    record write committed.
    """

    def __init__(self, db: Session, assets: AssetStore):
        self.db = db
        self.assets = assets

    def create_quiz(self, data: QuizCreateInput, user_id: uuid.UUID) -> QuizCreateResponse:
        self._ensure_name_available(data.name)

        game_id = uuid.uuid4()
        template_id = self._get_game_template_id()

        validate_questions(data.questions, len(data.files_to_upload) if data.files_to_upload is not None else None)

        prefix = self._asset_prefix(game_id)
        thumbnail_path = self.assets.upload(prefix, data.thumbnail_image)
        image_refs = self._upload_all(prefix, data.files_to_upload)

        content = build_quiz_content(
            questions=data.questions,
            uploaded_refs=image_refs,
            score_per_question=data.score_per_question,
            is_question_randomized=data.is_question_randomized,
            is_answer_randomized=data.is_answer_randomized,
        )

        game = Game(
            id=game_id,
            game_template_id=template_id,
            creator_id=user_id,
            name=data.name,
            description=data.description,
            thumbnail_image=thumbnail_path,
            is_published=bool(data.is_publish_immediately),
            game_json=content.model_dump(mode="json"),
        )
        self.db.add(game)
        self._commit(name=data.name, game_id=game_id)

        log.info("quiz created: id=%s creator=%s questions=%s", game_id, user_id, len(content.questions))
        return QuizCreateResponse(id=str(game_id))

    def get_quiz_detail(self, game_id: uuid.UUID, user_id: uuid.UUID, user_role: UserRole) -> QuizDetailResponse:
        game = self._get_manageable_game(game_id, user_id=user_id, user_role=user_role)
        return QuizDetailResponse(
            id=str(game.id),
            name=game.name,
            description=game.description,
            thumbnail_image=game.thumbnail_image,
            is_published=bool(game.is_published),
            created_at=game.created_at,
            game_json=load_quiz_content(game.game_json),
        )

    def update_quiz(
        self,
        data: QuizUpdateInput,
        game_id: uuid.UUID,
        user_id: uuid.UUID,
        user_role: UserRole,
    ) -> QuizUpdateResponse:
        game = self._get_manageable_game(game_id, user_id=user_id, user_role=user_role)

        old_content = load_quiz_content(game.game_json)
        old_refs = collect_asset_refs(old_content, game.thumbnail_image)

        if data.name is not None and data.name != game.name:
            self._ensure_name_available(data.name)

        files_count = len(data.files_to_upload) if data.files_to_upload is not None else None
        validate_questions(data.questions or [], files_count)

        prefix = self._asset_prefix(game.id)
        thumbnail_path = game.thumbnail_image
        if data.thumbnail_image is not None:
            thumbnail_path = self.assets.upload(prefix, data.thumbnail_image)
        image_refs = self._upload_all(prefix, data.files_to_upload)

        content = build_quiz_content(
            questions=data.questions,
            uploaded_refs=image_refs,
            previous=old_content,
            score_per_question=data.score_per_question,
            is_question_randomized=data.is_question_randomized,
            is_answer_randomized=data.is_answer_randomized,
        )

        if data.name is not None:
            game.name = data.name
        if data.description is not None:
            game.description = data.description
        if data.is_publish is not None:
            game.is_published = bool(data.is_publish)
        game.thumbnail_image = thumbnail_path
        game.game_json = content.model_dump(mode="json")
        self._commit(name=game.name, game_id=game.id)

        new_refs = collect_asset_refs(content, thumbnail_path)
        report = reconcile_assets(
            self.assets,
            sorted(old_refs),
            new_refs,
            max_workers=settings.asset_cleanup_max_workers,
        )

        log.info("quiz updated: id=%s actor=%s released_assets=%s", game.id, user_id, len(report.removed))
        return QuizUpdateResponse(id=str(game.id), warnings=[w.as_dict() for w in report.warnings])

    def _asset_prefix(self, game_id: uuid.UUID) -> str:
        return f"{settings.quiz_asset_prefix.strip('/')}/{game_id}"

    def _upload_all(self, prefix: str, files: Sequence[UploadedFile] | None) -> list[str]:
        refs: list[str] = []
        for f in files or []:
            refs.append(self.assets.upload(prefix, f))
        return refs

    def _commit(self, *, name: str, game_id: uuid.UUID) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            # Lost a concurrent create/rename race on the unique name index.
            taken = self.db.scalar(select(Game.id).where(Game.name == name, Game.id != game_id))
            if taken is not None:
                raise Conflict("Game name is already exist") from e
            raise
        except Exception:
            self.db.rollback()
            raise

    def _ensure_name_available(self, name: str) -> None:
        existing = self.db.scalar(select(Game.id).where(Game.name == name))
        if existing is not None:
            raise Conflict("Game name is already exist")

    def _get_game_template_id(self) -> uuid.UUID:
        template_id = self.db.scalar(select(GameTemplate.id).where(GameTemplate.slug == settings.quiz_template_slug))
        if template_id is None:
            raise NotFound("Game template not found")
        return template_id

    def _get_manageable_game(self, game_id: uuid.UUID, *, user_id: uuid.UUID, user_role: UserRole) -> Game:
        game = self.db.scalar(select(Game).where(Game.id == game_id))
        if game is None:
            raise NotFound("Game not found")
        if not can_manage(game, user_id=user_id, user_role=user_role):
            raise Forbidden("User cannot access this game")
        return game
