from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.security import hash_password, verify_password
from app.models.facility import Facility
from app.models.user import Role, User


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == email.lower().strip()))


def get_user_by_id(db: Session, user_id: int) -> User | None:
    return db.scalar(select(User).where(User.id == user_id))


def authenticate(db: Session, email: str, password: str) -> User | None:
    user = get_user_by_email(db, email)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    facility_id: int | None,
    full_name: str = "",
    role: Role = Role.front_desk,
    is_active: bool = True,
) -> User:
    user = User(
        email=email.lower().strip(),
        full_name=full_name,
        role=role,
        facility_id=facility_id,
        is_active=is_active,
        hashed_password=hash_password(password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def user_count(db: Session) -> int:
    return int(db.scalar(select(func.count(User.id))) or 0)


def ensure_default_facility(db: Session, *, name: str, code: str) -> Facility:
    code = code.strip().upper()
    facility = db.scalar(select(Facility).where(Facility.code == code))
    if facility:
        return facility
    facility = Facility(name=name, code=code, is_active=True)
    db.add(facility)
    db.commit()
    db.refresh(facility)
    return facility


def seed_initial_admin(db: Session, *, email: str, password: str, facility_id: int) -> bool:
    if user_count(db) > 0:
        return False
    create_user(
        db,
        email=email,
        password=password,
        facility_id=facility_id,
        full_name="Admin",
        role=Role.admin,
    )
    return True
