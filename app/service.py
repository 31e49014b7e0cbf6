from __future__ import annotations

import logging
import math
import secrets
import string
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from urllib.parse import urlparse

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ConflictError, NotFoundError, ProtectedPathError, ValidationError
from app.models import Mapping

logger = logging.getLogger(__name__)

# System routes and the admin front-end's static files.
RESERVED_PATHS = frozenset({
    "login",
    "admin",
    "__total_count",
    "admin.html",
    "login.html",
    "daisyui@5.css",
    "tailwindcss@4.js",
    "qr-code-styling.js",
    "zxing.js",
    "robots.txt",
    "wechat.svg",
    "favicon.svg",
    "api",
    "health",
})

PATH_ALPHABET = string.ascii_lowercase + string.digits
MAX_PATH_LENGTH = 255
MAX_PAGE_SIZE = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_naive(value: datetime) -> datetime:
    """Expiry and creation times are stored as naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_protected(path: str) -> bool:
    return path in RESERVED_PATHS


def validate_path(path: object) -> None:
    if not path or not isinstance(path, str):
        raise ValidationError("path is required")
    if len(path) > MAX_PATH_LENGTH:
        raise ValidationError(f"path must be at most {MAX_PATH_LENGTH} characters")
    if path.startswith("/") or any(ch.isspace() for ch in path):
        raise ValidationError("path must not start with '/' or contain whitespace")


def validate_target(target: object) -> None:
    if not target or not isinstance(target, str):
        raise ValidationError("target is required")
    parsed = urlparse(target)
    if not parsed.scheme or not parsed.netloc:
        raise ValidationError(f"target is not an absolute URL: {target!r}")


def validate_fields(name: object, enabled: object, is_wechat: object, qr_code_data: object) -> None:
    """Label and QR payload are optional strings; the flags must be real booleans."""
    if name is not None and not isinstance(name, str):
        raise ValidationError("name must be a string")
    if qr_code_data is not None and not isinstance(qr_code_data, str):
        raise ValidationError("qrCodeData must be a string")
    if not isinstance(enabled, bool):
        raise ValidationError("enabled must be a boolean")
    if not isinstance(is_wechat, bool):
        raise ValidationError("isWechat must be a boolean")


def parse_expiry(expiry: object) -> datetime | None:
    """
    Accepts None/empty (never expires), a datetime, a date, or an ISO-8601
    string such as "2024-01-01T00:00:00Z" or "2024-01-01".
    """
    if expiry is None or expiry == "":
        return None
    if isinstance(expiry, datetime):
        return to_utc_naive(expiry)
    if isinstance(expiry, date):
        return datetime.combine(expiry, time.min)
    if not isinstance(expiry, str):
        raise ValidationError("Invalid expiry date")
    try:
        return to_utc_naive(datetime.fromisoformat(expiry.strip()))
    except ValueError:
        raise ValidationError(f"Invalid expiry date: {expiry!r}") from None


def generate_path(length: int = settings.code_length) -> str:
    return "".join(secrets.choice(PATH_ALPHABET) for _ in range(length))


def _commit_or_conflict(db: Session, path: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"path '{path}' already exists") from None


def create_mapping(
    db: Session,
    path: str,
    target: str,
    name: str | None = None,
    expiry: str | datetime | None = None,
    enabled: bool = True,
    is_wechat: bool = False,
    qr_code_data: str | None = None,
    now: datetime | None = None,
) -> Mapping:
    """
    Inserts a new mapping.

    Raises ProtectedPathError for reserved paths, ValidationError for bad
    input and ConflictError when the path is already taken.
    """
    validate_path(path)
    if is_protected(path):
        raise ProtectedPathError(f"path '{path}' is reserved by the system")
    validate_target(target)
    expires_at = parse_expiry(expiry)
    validate_fields(name, enabled, is_wechat, qr_code_data)

    if is_wechat and not qr_code_data:
        raise ValidationError("WeChat mappings require qrCodeData")

    if db.get(Mapping, path) is not None:
        raise ConflictError(f"path '{path}' already exists")

    row = Mapping(
        path=path,
        target=target,
        name=name or None,
        expiry=expires_at,
        enabled=enabled,
        is_wechat=is_wechat,
        qr_code_data=qr_code_data,
        created_at=to_utc_naive(now or utcnow()),
    )
    db.add(row)
    _commit_or_conflict(db, path)
    db.refresh(row)

    logger.info("created mapping %s -> %s", path, target)
    return row


def create_with_random_path(
    db: Session,
    target: str,
    attempts: int = settings.bot_path_attempts,
    **fields,
) -> Mapping:
    """
    Generated path with collision retries: a taken path is regenerated,
    up to `attempts` times.
    """
    for _ in range(attempts):
        try:
            return create_mapping(db, generate_path(), target, **fields)
        except ConflictError:
            continue

    raise ConflictError("Failed to generate a unique path. Try again.")


def update_mapping(
    db: Session,
    old_path: str,
    new_path: str,
    target: str,
    name: str | None = None,
    expiry: str | datetime | None = None,
    enabled: bool = True,
    is_wechat: bool = False,
    qr_code_data: str | None = None,
) -> Mapping:
    """
    Rewrites the mapping stored under old_path, optionally renaming it.

    A WeChat mapping updated without qr_code_data keeps the QR payload
    already stored for old_path. Renaming onto another existing mapping is
    rejected with ConflictError.
    """
    validate_path(old_path)
    validate_path(new_path)
    if is_protected(new_path):
        raise ConflictError(f"path '{new_path}' is reserved by the system")
    validate_target(target)
    expires_at = parse_expiry(expiry)
    validate_fields(name, enabled, is_wechat, qr_code_data)

    existing = db.get(Mapping, old_path)
    if existing is None:
        raise NotFoundError(f"path '{old_path}' not found")

    if is_wechat and not qr_code_data:
        qr_code_data = existing.qr_code_data

    if is_wechat and not qr_code_data:
        raise ValidationError("WeChat mappings require qrCodeData")

    if new_path != old_path and db.get(Mapping, new_path) is not None:
        raise ConflictError(f"path '{new_path}' already exists")

    existing.path = new_path
    existing.target = target
    existing.name = name or None
    existing.expiry = expires_at
    existing.enabled = enabled
    existing.is_wechat = is_wechat
    existing.qr_code_data = qr_code_data
    _commit_or_conflict(db, new_path)
    db.refresh(existing)

    logger.info("updated mapping %s (now %s) -> %s", old_path, new_path, target)
    return existing


def delete_mapping(db: Session, path: str) -> bool:
    """Returns whether a row was removed; absent paths are not an error."""
    validate_path(path)
    if is_protected(path):
        raise ProtectedPathError(f"path '{path}' is reserved and cannot be deleted")

    result = db.execute(delete(Mapping).where(Mapping.path == path))
    db.commit()

    removed = result.rowcount > 0
    if removed:
        logger.info("deleted mapping %s", path)
    return removed


def get_mapping(db: Session, path: str) -> Mapping:
    row = db.get(Mapping, path)
    if row is None:
        raise NotFoundError(f"path '{path}' not found")
    return row


def get_active_target(db: Session, path: str, now: datetime | None = None) -> str | None:
    """
    Redirect hot path: one primary-key lookup that only matches enabled
    mappings whose expiry is absent or strictly in the future.
    """
    current = to_utc_naive(now or utcnow())
    stmt = select(Mapping.target).where(
        Mapping.path == path,
        Mapping.enabled.is_(True),
        or_(Mapping.expiry.is_(None), Mapping.expiry > current),
    )
    return db.execute(stmt).scalar_one_or_none()


@dataclass
class MappingPage:
    mappings: list[Mapping]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0


def list_mappings(db: Session, page: int = 1, page_size: int = 10) -> MappingPage:
    """
    Newest first, reserved paths excluded. The total comes from a window
    count over the same filtered rows as the page itself.
    """
    if page < 1 or page_size < 1:
        raise ValidationError("page and pageSize must be positive")
    page_size = min(page_size, MAX_PAGE_SIZE)

    visible = Mapping.path.not_in(sorted(RESERVED_PATHS))
    stmt = (
        select(Mapping, func.count().over().label("total"))
        .where(visible)
        .order_by(Mapping.created_at.desc(), Mapping.path)
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    rows = db.execute(stmt).all()

    if rows:
        total = rows[0].total
    elif page > 1:
        # Past the last page the window has nothing to count over.
        total = db.scalar(select(func.count()).select_from(Mapping).where(visible))
    else:
        total = 0

    return MappingPage(
        mappings=[row.Mapping for row in rows],
        total=total,
        page=page,
        page_size=page_size,
    )
