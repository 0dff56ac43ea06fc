import logging
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import models
import uploads
from errors import CodeSpaceExhausted
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

logger = logging.getLogger("shortdrop.crud")

ALPHABET = string.ascii_letters + string.digits
CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 5


class DuplicateCode(Exception):
    pass


@dataclass
class DeleteResult:
    code: str
    kind: str
    value: str
    # None for url entries, which have no backing file.
    file_removed: bool | None = None


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def now() -> int:
    return int(time.time())


# ---------- items ----------

def insert_item(db: Session, code: str, kind: str, value: str, created_at: int | None = None) -> models.Item:
    item = models.Item(
        code=code,
        kind=kind,
        value=value,
        created_at=now() if created_at is None else created_at,
    )
    db.add(item)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateCode(code) from exc
    db.refresh(item)
    return item


def create_item(
    db: Session,
    kind: str,
    value: str,
    generate: Callable[[], str] = generate_code,
    attempts: int = MAX_CODE_ATTEMPTS,
) -> models.Item:
    for attempt in range(1, attempts + 1):
        code = generate()
        try:
            item = insert_item(db, code, kind, value)
        except DuplicateCode:
            logger.warning("Short code collision on %s (attempt %d/%d)", code, attempt, attempts)
            continue
        logger.info("Created %s entry %s", kind, code)
        return item
    logger.error("Gave up generating a short code after %d attempts", attempts)
    raise CodeSpaceExhausted(f"No free short code after {attempts} attempts")


def get_item(db: Session, code: str) -> models.Item | None:
    return db.get(models.Item, code)


def get_items(db: Session, skip: int = 0, limit: int = 100) -> list[models.Item]:
    return (
        db.query(models.Item)
        .order_by(models.Item.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def count_items(db: Session) -> int:
    return db.query(models.Item).count()


def delete_item(db: Session, code: str, upload_dir: Path) -> DeleteResult | None:
    item = get_item(db, code)
    if not item:
        return None
    result = DeleteResult(code=item.code, kind=item.kind, value=item.value)
    db.delete(item)
    db.commit()

    if result.kind == "file":
        result.file_removed = uploads.remove(upload_dir, result.value)
        if not result.file_removed:
            logger.error("Entry %s deleted but file %s was not removed", code, result.value)
    logger.info("Deleted %s entry %s", result.kind, code)
    return result


# ---------- admin account ----------

def get_admin(db: Session) -> models.Admin | None:
    return db.get(models.Admin, 1)


def create_admin(db: Session, username: str, password_hash: str, salt: str) -> bool:
    """Insert the singleton admin row. False if another request got there first."""
    db.add(models.Admin(id=1, username=username, password_hash=password_hash, salt=salt))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True


# ---------- sessions ----------

def insert_session(db: Session, token: str) -> models.AdminSession:
    session = models.AdminSession(token=token, created_at=now())
    db.add(session)
    db.commit()
    return session


def get_session(db: Session, token: str) -> models.AdminSession | None:
    return db.get(models.AdminSession, token)


def delete_session(db: Session, token: str) -> None:
    db.query(models.AdminSession).filter_by(token=token).delete()
    db.commit()
