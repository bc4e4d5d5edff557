"""Receipt routes -- Donors and receipt Booklets."""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.database import get_db
from iafa.exceptions import InvalidStateError, NotFoundError, ValidationError
from iafa.middleware.auth import require_permission, write_audit_log

router = APIRouter(prefix="/api", tags=["receipts"])


# ---------------------------------------------------------------------------
# DONORS
# ---------------------------------------------------------------------------

class DonorCreate(BaseModel):
    name: str
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    pan: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name cannot be blank")
        return v.strip()


def _donor_out(d) -> dict:
    return {
        "id": str(d.id),
        "name": d.name,
        "phone": d.phone,
        "email": d.email,
        "address": d.address,
        "pan": d.pan,
        "is_active": d.is_active,
    }


@router.get("/donors")
async def list_donors(
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.donors.view")),
):
    from iafa.models.donor import Donor

    stmt = select(Donor).where(Donor.is_active == True)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Donor.name.ilike(pattern), Donor.phone.ilike(pattern)))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    result = await db.execute(
        stmt.order_by(Donor.name).offset((page - 1) * page_size).limit(page_size)
    )
    items = [_donor_out(d) for d in result.scalars().all()]
    return {"success": True, "data": items, "total": total, "page": page, "page_size": page_size}


@router.get("/donors/{donor_id}")
async def get_donor(
    donor_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.donors.view")),
):
    from iafa.models.donor import Donor

    donor = await db.get(Donor, donor_id)
    if donor is None:
        raise NotFoundError("Donor", donor_id)
    return {"success": True, "data": _donor_out(donor)}


@router.post("/donors", status_code=201)
async def create_donor(
    body: DonorCreate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.donors.create")),
):
    from iafa.models.donor import Donor

    donor = Donor(
        name=body.name,
        phone=body.phone,
        email=body.email,
        address=body.address,
        pan=body.pan,
        is_active=True,
    )
    db.add(donor)
    await db.flush()
    await write_audit_log(db, _user, "ledger.donor.create", "donor", str(donor.id), {"name": body.name})
    await db.commit()
    return {"success": True, "data": _donor_out(donor)}


class DonorUpdate(BaseModel):
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    pan: str | None = None
    is_active: bool | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Name cannot be blank")
        return v.strip() if v else v


async def _get_donor(db: AsyncSession, donor_id: uuid.UUID):
    from iafa.models.donor import Donor

    donor = await db.get(Donor, donor_id)
    if donor is None:
        raise NotFoundError("Donor", donor_id)
    return donor


@router.put("/donors/{donor_id}")
async def update_donor(
    donor_id: uuid.UUID,
    body: DonorUpdate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.donors.update")),
):
    donor = await _get_donor(db, donor_id)
    for field in ["name", "phone", "email", "address", "pan", "is_active"]:
        val = getattr(body, field, None)
        if val is not None:
            setattr(donor, field, val)
    await db.flush()
    await write_audit_log(
        db, _user, "ledger.donor.update", "donor", str(donor_id), body.model_dump(exclude_unset=True)
    )
    await db.commit()
    return {"success": True, "data": _donor_out(donor)}


@router.delete("/donors/{donor_id}")
async def delete_donor(
    donor_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.donors.delete")),
):
    """Delete a donor, or deactivate one that receipts already name."""
    from iafa.models.transaction import Transaction

    donor = await _get_donor(db, donor_id)
    used = (await db.execute(
        select(func.count(Transaction.id)).where(Transaction.donor_id == donor_id)
    )).scalar_one()

    if used:
        donor.is_active = False
        await db.flush()
        await write_audit_log(
            db, _user, "ledger.donor.deactivate", "donor", str(donor_id),
            {"name": donor.name, "transactions": used},
        )
        await db.commit()
        return {
            "success": True,
            "data": {"id": str(donor_id), "deleted": False, "deactivated": True, "transactions": used},
        }

    await db.delete(donor)
    await write_audit_log(db, _user, "ledger.donor.delete", "donor", str(donor_id), {"name": donor.name})
    await db.commit()
    return {"success": True, "data": {"id": str(donor_id), "deleted": True, "deactivated": False}}


# ---------------------------------------------------------------------------
# BOOKLETS
# ---------------------------------------------------------------------------

class BookletCreate(BaseModel):
    booklet_no: str
    start_no: int
    end_no: int

    @model_validator(mode="after")
    def validate_range(self):
        if self.start_no < 1:
            raise ValueError("start_no must be positive")
        if self.end_no < self.start_no:
            raise ValueError("end_no must not be less than start_no")
        if self.end_no - self.start_no >= 1000:
            raise ValueError("A booklet holds at most 1000 receipts")
        return self


def _booklet_out(b) -> dict:
    pages_left = sorted(b.pages_left or [])
    return {
        "id": str(b.id),
        "booklet_no": b.booklet_no,
        "start_no": b.start_no,
        "end_no": b.end_no,
        "pages_left": pages_left,
        "pages_used": (b.end_no - b.start_no + 1) - len(pages_left),
        "is_active": b.is_active,
    }


@router.get("/booklets")
async def list_booklets(
    is_active: bool | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.booklets.view")),
):
    from iafa.models.donor import Booklet

    stmt = select(Booklet)
    if is_active is not None:
        stmt = stmt.where(Booklet.is_active == is_active)
    result = await db.execute(stmt.order_by(Booklet.booklet_no))
    items = [_booklet_out(b) for b in result.scalars().all()]
    return {"success": True, "data": items, "total": len(items)}


@router.get("/booklets/{booklet_id}")
async def get_booklet(
    booklet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.booklets.view")),
):
    from iafa.models.donor import Booklet

    booklet = await db.get(Booklet, booklet_id)
    if booklet is None:
        raise NotFoundError("Booklet", booklet_id)
    return {"success": True, "data": _booklet_out(booklet)}


@router.post("/booklets", status_code=201)
async def create_booklet(
    body: BookletCreate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.booklets.create")),
):
    from iafa.models.donor import Booklet

    existing = await db.execute(select(Booklet.id).where(Booklet.booklet_no == body.booklet_no))
    if existing.scalar_one_or_none():
        raise ValidationError(f"Booklet {body.booklet_no!r} already exists")

    booklet = Booklet(
        booklet_no=body.booklet_no,
        start_no=body.start_no,
        end_no=body.end_no,
        pages_left=list(range(body.start_no, body.end_no + 1)),
        is_active=True,
    )
    db.add(booklet)
    await db.flush()
    await write_audit_log(
        db, _user, "ledger.booklet.create", "booklet", str(booklet.id),
        {"booklet_no": body.booklet_no, "start_no": body.start_no, "end_no": body.end_no},
    )
    await db.commit()
    return {"success": True, "data": _booklet_out(booklet)}


class BookletUpdate(BaseModel):
    booklet_no: str | None = None
    start_no: int | None = None
    end_no: int | None = None

    @field_validator("booklet_no")
    @classmethod
    def validate_booklet_no(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Booklet number cannot be blank")
        return v.strip() if v else v


async def _lock_booklet(db: AsyncSession, booklet_id: uuid.UUID):
    from iafa.models.donor import Booklet

    result = await db.execute(
        select(Booklet)
        .where(Booklet.id == booklet_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    booklet = result.scalar_one_or_none()
    if booklet is None:
        raise NotFoundError("Booklet", booklet_id)
    return booklet


@router.put("/booklets/{booklet_id}")
async def update_booklet(
    booklet_id: uuid.UUID,
    body: BookletUpdate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.booklets.update")),
):
    """Renumber a booklet, or change its receipt range while no page is used."""
    from iafa.models.donor import Booklet

    booklet = await _lock_booklet(db, booklet_id)
    if body.booklet_no is not None and body.booklet_no != booklet.booklet_no:
        existing = await db.execute(select(Booklet.id).where(Booklet.booklet_no == body.booklet_no))
        if existing.scalar_one_or_none():
            raise ValidationError(f"Booklet {body.booklet_no!r} already exists")
        booklet.booklet_no = body.booklet_no

    if body.start_no is not None or body.end_no is not None:
        start_no = body.start_no if body.start_no is not None else booklet.start_no
        end_no = body.end_no if body.end_no is not None else booklet.end_no
        try:
            BookletCreate(booklet_no=booklet.booklet_no, start_no=start_no, end_no=end_no)
        except ValueError as exc:
            raise ValidationError(f"Invalid receipt range {start_no}-{end_no}") from exc
        if _booklet_out(booklet)["pages_used"]:
            raise InvalidStateError(
                f"Booklet {booklet.booklet_no} has used receipts; its range cannot change",
                booklet_id=booklet_id,
            )
        booklet.start_no = start_no
        booklet.end_no = end_no
        booklet.pages_left = list(range(start_no, end_no + 1))

    await db.flush()
    await write_audit_log(
        db, _user, "ledger.booklet.update", "booklet", str(booklet_id),
        body.model_dump(exclude_unset=True),
    )
    await db.commit()
    return {"success": True, "data": _booklet_out(booklet)}


@router.post("/booklets/{booklet_id}/close")
async def close_booklet(
    booklet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.booklets.update")),
):
    booklet = await _lock_booklet(db, booklet_id)
    if not booklet.is_active:
        raise InvalidStateError(f"Booklet {booklet.booklet_no} is already closed", booklet_id=booklet_id)

    booklet.is_active = False
    await db.flush()
    await write_audit_log(
        db, _user, "ledger.booklet.close", "booklet", str(booklet_id),
        {"booklet_no": booklet.booklet_no, "pages_left": len(booklet.pages_left or [])},
    )
    await db.commit()
    return {"success": True, "data": _booklet_out(booklet)}


@router.post("/booklets/{booklet_id}/reactivate")
async def reactivate_booklet(
    booklet_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.booklets.update")),
):
    """Reopen a closed booklet.  Used pages stay used."""
    booklet = await _lock_booklet(db, booklet_id)
    if booklet.is_active:
        raise InvalidStateError(f"Booklet {booklet.booklet_no} is already active", booklet_id=booklet_id)
    if not booklet.pages_left:
        raise InvalidStateError(f"Booklet {booklet.booklet_no} has no unused receipts", booklet_id=booklet_id)

    booklet.is_active = True
    await db.flush()
    await write_audit_log(
        db, _user, "ledger.booklet.reactivate", "booklet", str(booklet_id),
        {"booklet_no": booklet.booklet_no},
    )
    await db.commit()
    return {"success": True, "data": _booklet_out(booklet)}
