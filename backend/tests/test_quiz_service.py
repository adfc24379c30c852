import uuid

import pytest
from sqlalchemy import func, select

from app.core.errors import Conflict, Forbidden, NotFound, ValidationError
from app.models.game import Game, GameTemplate
from app.models.user import UserRole
from app.schemas.quiz import QuizCreateInput, QuizUpdateInput
from app.services.game_templates import ensure_game_template
from app.services.quiz_service import QuizService
from app.services.storage import UploadedFile


def _file(name: str = "img.png") -> UploadedFile:
    return UploadedFile(filename=name, content=b"\x89PNG", content_type="image/png")


def _question(text: str, image=None, correct: int = 0) -> dict:
    return {
        "question_text": text,
        "question_image_array_index": image,
        "answers": [
            {"answer_text": f"{text}-a", "is_correct": correct == 0},
            {"answer_text": f"{text}-b", "is_correct": correct == 1},
        ],
    }


def _create_input(*, questions, files=None, **overrides) -> QuizCreateInput:
    payload = {
        "name": f"quiz-{uuid.uuid4().hex[:8]}",
        "description": "desc",
        "thumbnail_image": _file("thumb.jpg"),
        "score_per_question": 10,
        "is_question_randomized": False,
        "is_answer_randomized": True,
        "is_publish_immediately": True,
        "questions": questions,
        "files_to_upload": files,
    }
    payload.update(overrides)
    return QuizCreateInput.model_validate(payload)


def _stored(db, game_id: str) -> Game:
    db.expire_all()
    return db.scalar(select(Game).where(Game.id == uuid.UUID(game_id)))


def test_create_resolves_uploaded_image_and_persists_record(db, assets, owner_id):
    data = _create_input(questions=[_question("one", image=0), _question("two")], files=[_file()])

    created = QuizService(db, assets).create_quiz(data, owner_id)

    game = _stored(db, created.id)
    assert game.creator_id == owner_id
    assert game.name == data.name
    assert game.is_published is True
    assert game.thumbnail_image == assets.uploads[0]
    assert game.thumbnail_image.startswith(f"game/quiz/{created.id}/")

    content = game.game_json
    assert content["score_per_question"] == 10
    assert content["is_answer_randomized"] is True
    assert content["questions"][0]["question_image"] == assets.uploads[1]
    assert content["questions"][1]["question_image"] is None

    template_id = db.scalar(select(GameTemplate.id).where(GameTemplate.slug == "quiz"))
    assert game.game_template_id == template_id


def test_create_duplicate_name_conflicts_before_upload(db, assets, owner_id):
    data = _create_input(questions=[_question("q")])
    QuizService(db, assets).create_quiz(data, owner_id)
    uploads_before = list(assets.uploads)

    with pytest.raises(Conflict):
        QuizService(db, assets).create_quiz(_create_input(questions=[_question("q")], name=data.name), owner_id)
    assert assets.uploads == uploads_before


def test_create_validation_failure_uploads_nothing(db, assets, owner_id):
    bad = _create_input(questions=[_question("q", image=0)], files=[_file(), _file()])

    with pytest.raises(ValidationError, match="all uploaded files must be used"):
        QuizService(db, assets).create_quiz(bad, owner_id)
    assert assets.uploads == []


def test_create_without_template_is_not_found(db, assets, owner_id, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "quiz_template_slug", f"missing-{uuid.uuid4().hex[:6]}")
    with pytest.raises(NotFound, match="template"):
        QuizService(db, assets).create_quiz(_create_input(questions=[_question("q")]), owner_id)
    assert assets.uploads == []


def test_detail_hides_internal_fields_and_checks_owner(db, assets, owner_id, make_user):
    created = QuizService(db, assets).create_quiz(_create_input(questions=[_question("q")]), owner_id)
    gid = uuid.UUID(created.id)

    view = QuizService(db, assets).get_quiz_detail(gid, owner_id, UserRole.user)
    dumped = view.model_dump()
    assert dumped["id"] == created.id
    for hidden in ("creator_id", "game_template_id", "updated_at"):
        assert hidden not in dumped

    stranger = make_user(UserRole.admin)
    with pytest.raises(Forbidden):
        QuizService(db, assets).get_quiz_detail(gid, stranger, UserRole.admin)

    boss = make_user(UserRole.super_admin)
    assert QuizService(db, assets).get_quiz_detail(gid, boss, UserRole.super_admin).id == created.id

    with pytest.raises(NotFound):
        QuizService(db, assets).get_quiz_detail(uuid.uuid4(), owner_id, UserRole.user)


def test_update_with_unchanged_questions_is_idempotent(db, assets, owner_id):
    service = QuizService(db, assets)
    created = service.create_quiz(
        _create_input(questions=[_question("one", image=0), _question("two", correct=1)], files=[_file()]),
        owner_id,
    )
    before = _stored(db, created.id)
    before_json = dict(before.game_json)
    image_ref = before_json["questions"][0]["question_image"]

    result = service.update_quiz(
        QuizUpdateInput.model_validate(
            {"questions": [_question("one", image=image_ref), _question("two", correct=1)]}
        ),
        uuid.UUID(created.id),
        owner_id,
        UserRole.user,
    )

    after = _stored(db, created.id)
    assert after.game_json == before_json
    assert after.thumbnail_image == before.thumbnail_image
    assert assets.removed == []
    assert result.warnings == []


def test_update_removes_only_dropped_image(db, assets, owner_id):
    service = QuizService(db, assets)
    created = service.create_quiz(
        _create_input(questions=[_question("a", image=0), _question("b", image=1)], files=[_file("a.png"), _file("b.png")]),
        owner_id,
    )
    game = _stored(db, created.id)
    ref_a = game.game_json["questions"][0]["question_image"]
    ref_b = game.game_json["questions"][1]["question_image"]

    service.update_quiz(
        QuizUpdateInput.model_validate({"questions": [_question("b", image=ref_b)]}),
        uuid.UUID(created.id),
        owner_id,
        UserRole.user,
    )

    assert assets.removed == [ref_a]
    assert ref_b in assets.objects


def test_update_new_thumbnail_and_upload_replaces_old_assets(db, assets, owner_id):
    service = QuizService(db, assets)
    created = service.create_quiz(_create_input(questions=[_question("a", image=0)], files=[_file()]), owner_id)
    game = _stored(db, created.id)
    old_thumb = game.thumbnail_image
    old_image = game.game_json["questions"][0]["question_image"]

    service.update_quiz(
        QuizUpdateInput.model_validate(
            {
                "thumbnail_image": _file("new-thumb.jpg"),
                "questions": [_question("a", image=0)],
                "files_to_upload": [_file("new.png")],
                "is_publish": False,
            }
        ),
        uuid.UUID(created.id),
        owner_id,
        UserRole.user,
    )

    game = _stored(db, created.id)
    assert game.is_published is False
    assert game.thumbnail_image not in (old_thumb, None)
    assert game.game_json["questions"][0]["question_image"] == assets.uploads[-1]
    assert sorted(assets.removed) == sorted([old_thumb, old_image])


def test_update_without_questions_keeps_content(db, assets, owner_id):
    service = QuizService(db, assets)
    created = service.create_quiz(_create_input(questions=[_question("a", image=0)], files=[_file()]), owner_id)
    before = dict(_stored(db, created.id).game_json)

    service.update_quiz(
        QuizUpdateInput.model_validate({"description": "changed", "score_per_question": 3}),
        uuid.UUID(created.id),
        owner_id,
        UserRole.user,
    )

    game = _stored(db, created.id)
    assert game.description == "changed"
    assert game.game_json["questions"] == before["questions"]
    assert game.game_json["score_per_question"] == 3
    assert game.game_json["is_answer_randomized"] == before["is_answer_randomized"]
    assert assets.removed == []


def test_update_cleanup_failure_is_a_warning(db, assets, owner_id):
    service = QuizService(db, assets)
    created = service.create_quiz(_create_input(questions=[_question("a", image=0)], files=[_file()]), owner_id)
    old_image = _stored(db, created.id).game_json["questions"][0]["question_image"]
    assets.fail_on.add(old_image)

    result = service.update_quiz(
        QuizUpdateInput.model_validate({"questions": [_question("a")]}),
        uuid.UUID(created.id),
        owner_id,
        UserRole.user,
    )

    assert result.id == created.id
    assert [w["reference"] for w in result.warnings] == [old_image]
    assert _stored(db, created.id).game_json["questions"][0]["question_image"] is None


def test_update_forbidden_for_non_owner_before_any_upload(db, assets, owner_id, make_user):
    service = QuizService(db, assets)
    created = service.create_quiz(_create_input(questions=[_question("a")]), owner_id)
    uploads_before = list(assets.uploads)
    other = make_user(UserRole.user)

    with pytest.raises(Forbidden):
        service.update_quiz(
            QuizUpdateInput.model_validate({"thumbnail_image": _file()}),
            uuid.UUID(created.id),
            other,
            UserRole.user,
        )
    assert assets.uploads == uploads_before


def test_super_admin_can_update_any_quiz(db, assets, owner_id, make_user):
    service = QuizService(db, assets)
    created = service.create_quiz(_create_input(questions=[_question("a")]), owner_id)
    boss = make_user(UserRole.super_admin)

    service.update_quiz(QuizUpdateInput(name=f"renamed-{uuid.uuid4().hex[:6]}"), uuid.UUID(created.id), boss, UserRole.super_admin)

    game = _stored(db, created.id)
    assert game.name.startswith("renamed-")
    assert game.creator_id == owner_id


def test_update_validation_runs_before_upload(db, assets, owner_id):
    service = QuizService(db, assets)
    created = service.create_quiz(_create_input(questions=[_question("a")]), owner_id)
    uploads_before = list(assets.uploads)

    with pytest.raises(ValidationError, match="question no. 1"):
        service.update_quiz(
            QuizUpdateInput.model_validate(
                {
                    "thumbnail_image": _file(),
                    "questions": [{"question_text": "x", "answers": [{"answer_text": "a", "is_correct": False}]}],
                }
            ),
            uuid.UUID(created.id),
            owner_id,
            UserRole.user,
        )
    assert assets.uploads == uploads_before
    assert assets.removed == []


def test_rename_to_taken_name_conflicts(db, assets, owner_id):
    service = QuizService(db, assets)
    first = _create_input(questions=[_question("a")])
    service.create_quiz(first, owner_id)
    second = service.create_quiz(_create_input(questions=[_question("a")]), owner_id)

    with pytest.raises(Conflict):
        service.update_quiz(QuizUpdateInput(name=first.name), uuid.UUID(second.id), owner_id, UserRole.user)


def test_create_losing_name_race_on_commit_is_conflict(db, assets, owner_id, monkeypatch):
    service = QuizService(db, assets)
    first = _create_input(questions=[_question("a")])
    service.create_quiz(first, owner_id)

    # Name check passes, the unique index rejects the insert at commit.
    monkeypatch.setattr(QuizService, "_ensure_name_available", lambda self, name: None)
    with pytest.raises(Conflict):
        service.create_quiz(_create_input(questions=[_question("a")], name=first.name), owner_id)

    monkeypatch.undo()
    assert db.scalar(select(func.count(Game.id)).where(Game.name == first.name)) == 1


def test_update_failed_write_rolls_back_and_skips_cleanup(db, assets, owner_id, monkeypatch):
    service = QuizService(db, assets)
    created = service.create_quiz(
        _create_input(questions=[_question("a", image=0), _question("b")], files=[_file()]),
        owner_id,
    )
    ref_a = _stored(db, created.id).game_json["questions"][0]["question_image"]

    def broken_commit():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(RuntimeError, match="database unavailable"):
        service.update_quiz(
            QuizUpdateInput.model_validate({"questions": [_question("b")]}),
            uuid.UUID(created.id),
            owner_id,
            UserRole.user,
        )

    monkeypatch.undo()
    assert assets.removed == []
    assert ref_a in assets.objects
    assert _stored(db, created.id).game_json["questions"][0]["question_image"] == ref_a


def test_ensure_game_template_is_idempotent(db):
    a = ensure_game_template(db, slug="quiz", name="Quiz")
    b = ensure_game_template(db, slug="quiz", name="Other")
    assert a.id == b.id
