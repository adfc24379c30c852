from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.game import GameTemplate


def ensure_game_template(db: Session, *, slug: str, name: str, description: str | None = None) -> GameTemplate:
    """Idempotently create the template row resolved by `slug`."""
    tpl = db.scalar(select(GameTemplate).where(GameTemplate.slug == slug))
    if tpl is not None:
        return tpl

    tpl = GameTemplate(slug=slug, name=name, description=description)
    db.add(tpl)
    db.flush()
    return tpl
