from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

from auth import create_token, get_current_user, hash_password, public_user, require_admin, verify_password
from database import create_document, get_db, get_documents, get_or_404, now
from errors import AuthError, ConflictError, ValidationError
from schemas import User as UserSchema

router = APIRouter(tags=["Users"])


# Request models
class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class StaffCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    position: str = Field(..., min_length=1)


class StaffUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    position: Optional[str] = None


def _create_user(db, req, role: str, position: Optional[str] = None) -> dict:
    if db["user"].find_one({"email": req.email}):
        raise ConflictError("Email already registered")
    user = UserSchema(
        name=req.name,
        email=req.email,
        password_hash=hash_password(req.password),
        phone=req.phone,
        position=position,
        role=role,
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ConflictError("Email already registered")
    return get_or_404(db, "user", user_id, "User")


# Auth
@router.post("/api/auth/signup")
def signup(req: SignupRequest, db=Depends(get_db)):
    created = _create_user(db, req, role="reseller")
    return {"token": create_token(created), "user": public_user(created)}


@router.post("/api/auth/login")
def login(req: LoginRequest, db=Depends(get_db)):
    user = db["user"].find_one({"email": req.email})
    if not user or not verify_password(req.password, user.get("password_hash", "")):
        raise AuthError("Invalid credentials")
    return {"token": create_token(user), "user": public_user(user)}


@router.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return public_user(user)


# Staff
@router.get("/api/staff")
def list_staff(admin=Depends(require_admin), db=Depends(get_db)):
    return [public_user(u) for u in get_documents(db, "user", {"role": "admin"}, sort=[("name", 1)])]


@router.post("/api/staff", status_code=201)
def create_staff(req: StaffCreateRequest, admin=Depends(require_admin), db=Depends(get_db)):
    created = _create_user(db, req, role="admin", position=req.position)
    return public_user(created)


@router.put("/api/staff/{staff_id}")
def update_staff(staff_id: str, req: StaffUpdateRequest, admin=Depends(require_admin), db=Depends(get_db)):
    staff = get_or_404(db, "user", staff_id, "Staff member")
    updates = {k: v for k, v in req.model_dump().items() if v is not None}
    if not updates:
        raise ValidationError("No updates provided")
    if "name" in updates and not updates["name"].strip():
        raise ValidationError("Name is required")
    if "position" in updates and not updates["position"].strip():
        raise ValidationError("Position is required")
    updates["updated_at"] = now()
    db["user"].update_one({"_id": staff["_id"]}, {"$set": updates})
    return public_user(db["user"].find_one({"_id": staff["_id"]}))


@router.delete("/api/staff/{staff_id}")
def delete_staff(staff_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    staff = get_or_404(db, "user", staff_id, "Staff member")
    if staff["_id"] == admin["_id"]:
        raise ValidationError("You cannot delete your own account")
    db["user"].delete_one({"_id": staff["_id"]})
    return {"deleted": True}


@router.get("/api/resellers")
def list_resellers(admin=Depends(require_admin), db=Depends(get_db)):
    return [public_user(u) for u in get_documents(db, "user", {"role": "reseller"}, sort=[("name", 1)])]
