import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.security import create_access_token
from app.db.session import get_db
from app.deps import get_current_user
from app.models.user import User
from app.schemas.auth import LoginRequest, Token, UserOut
from app.services.audit import log_event
from app.services.users import authenticate, get_user_by_email

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("frontdesk.auth")


@router.post("/login", response_model=Token)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    ip_address = request.client.host if request.client else None
    existing = get_user_by_email(db, payload.email)
    if existing and not existing.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")
    user = authenticate(db, payload.email, payload.password)
    if not user:
        logger.warning("Failed login for %s from %s", payload.email, ip_address)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_access_token(
        user.id, email=user.email, role=user.role.value, facility_id=user.facility_id
    )
    log_event(
        db,
        actor=user,
        action="auth.login",
        entity_type="user",
        entity_id=str(user.id),
        facility_id=user.facility_id,
        ip_address=ip_address,
    )
    db.commit()
    return Token(access_token=token)


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user
