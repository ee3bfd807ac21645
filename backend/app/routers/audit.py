from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import get_current_facility_id, require_admin
from app.models.user import User
from app.schemas.audit_log import AuditLogOut
from app.schemas.paging import PageOut
from app.services.audit import entity_history
from app.services.paging import PageParams

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/{entity_type}/{entity_id}", response_model=PageOut[AuditLogOut])
def record_history(
    entity_type: str,
    entity_id: str,
    db: Session = Depends(get_db),
    _user: User = Depends(require_admin),
    facility_id: int = Depends(get_current_facility_id),
    page_number: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
):
    page = entity_history(
        db,
        facility_id,
        entity_type=entity_type,
        entity_id=entity_id,
        params=PageParams.build(page_number, page_size),
    )
    return PageOut[AuditLogOut].build(page, [AuditLogOut.model_validate(e) for e in page.items])
