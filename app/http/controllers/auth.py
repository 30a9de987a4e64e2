"""
Authentication routes
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.auth import create_access_token, get_current_user, get_password_hash, verify_password
from app.database import get_db
from app.http.requests.schemas import LoginRequest, RegisterRequest
from app.models import Business, BusinessMember, MemberStatus, User

logger = logging.getLogger(__name__)
router = APIRouter()


def _user_payload(user: User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name}


@router.post("/login")
async def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    """Login with email and password"""
    user = db.query(User).filter(User.email == credentials.email).first()
    if not user or not verify_password(credentials.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = create_access_token(data={"sub": user.id})
    return {"user": _user_payload(user), "token": token}


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(user_data: RegisterRequest, db: Session = Depends(get_db)):
    """Register a new user"""
    if db.query(User).filter(User.email == user_data.email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    user = User(
        email=user_data.email,
        name=user_data.name.strip(),
        password_hash=get_password_hash(user_data.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)

    token = create_access_token(data={"sub": user.id})
    return {"user": _user_payload(user), "token": token}


@router.get("/me")
async def me(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Current user with the businesses they own or belong to"""
    owned = db.query(Business).filter(Business.owner_id == current_user.id).all()
    member_of = (
        db.query(Business)
        .join(BusinessMember, BusinessMember.business_id == Business.id)
        .filter(BusinessMember.user_id == current_user.id, BusinessMember.status == MemberStatus.ACTIVE)
        .all()
    )
    businesses = {b.id: b for b in owned + member_of}
    return {
        **_user_payload(current_user),
        "businesses": [
            {"id": b.id, "name": b.name, "vendorName": b.vendor_name, "isOwner": b.owner_id == current_user.id}
            for b in businesses.values()
        ],
    }
