from fastapi import APIRouter, Depends, HTTPException, status, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing import Optional
from sqlalchemy.orm import Session

from budget_app.models.schemas import User, UserCreate, UserLogin, AuthResponse, Token, RefreshRequest
from budget_app.services.auth import (
    verify_password,
    get_password_hash,
    validate_password_strength,
    create_token_pair,
    decode_access_token,
    decode_refresh_token,
)
from budget_app.services.sessions import SessionTracker, get_session_tracker
from budget_app.database.postgres_db import get_db as get_session
from budget_app.database.db_service import get_db_service
from budget_app.api.limiter import limiter
from budget_app.config import settings

router = APIRouter(prefix="/auth", tags=["authentication"])
# Login takes a JSON body, so docs authorize with a pasted bearer token
bearer_scheme = HTTPBearer(auto_error=False)

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def _set_auth_cookies(response: Response, tokens: dict) -> None:
    cookie_args = {
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": "strict",
    }
    response.set_cookie(
        ACCESS_COOKIE,
        tokens["access_token"],
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        **cookie_args,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        tokens["refresh_token"],
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        **cookie_args,
    )


def _clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_session),
    tracker: SessionTracker = Depends(get_session_tracker),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = credentials.credentials if credentials else request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise credentials_exception

    token_data = decode_access_token(token)
    if token_data is None or token_data.user_id is None:
        raise credentials_exception

    db = get_db_service(session)
    user_doc = db.find_one("users", {"id": token_data.user_id})
    if user_doc is None:
        raise credentials_exception

    if not tracker.touch(user_doc["id"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has timed out due to inactivity",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return User(**user_doc)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.AUTH_RATE_LIMIT)
async def register(
    request: Request,
    response: Response,
    user: UserCreate,
    session: Session = Depends(get_session),
    tracker: SessionTracker = Depends(get_session_tracker),
):
    errors = validate_password_strength(user.password)
    if not user.first_name.strip():
        errors.append("First name is required")
    if not user.last_name.strip():
        errors.append("Last name is required")
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=errors)

    db = get_db_service(session)
    email = user.email.lower()

    if db.find_one("users", {"email": email}):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered"
        )

    created_user = db.insert("users", {
        "email": email,
        "password_hash": get_password_hash(user.password),
        "first_name": user.first_name.strip(),
        "last_name": user.last_name.strip(),
    })
    session.commit()

    tokens = create_token_pair(created_user["id"], email)
    _set_auth_cookies(response, tokens)
    tracker.start(created_user["id"])

    return {**tokens, "user": User(**created_user)}


@router.post("/login", response_model=AuthResponse)
@limiter.limit(settings.AUTH_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    credentials: UserLogin,
    session: Session = Depends(get_session),
    tracker: SessionTracker = Depends(get_session_tracker),
):
    db = get_db_service(session)
    user_doc = db.find_one("users", {"email": credentials.email.lower()})

    if not user_doc or not verify_password(credentials.password, user_doc["password_hash"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    tokens = create_token_pair(user_doc["id"], user_doc["email"])
    _set_auth_cookies(response, tokens)
    tracker.start(user_doc["id"])

    return {**tokens, "user": User(**user_doc)}


@router.post("/logout")
async def logout(
    response: Response,
    current_user: User = Depends(get_current_user),
    tracker: SessionTracker = Depends(get_session_tracker),
):
    tracker.clear(current_user.id)
    _clear_auth_cookies(response)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=User)
async def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/refresh", response_model=Token)
@limiter.limit(settings.AUTH_RATE_LIMIT)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    session: Session = Depends(get_session),
    tracker: SessionTracker = Depends(get_session_tracker),
):
    refresh_token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not refresh_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token is required")

    token_data = decode_refresh_token(refresh_token)
    if token_data is None or token_data.user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired refresh token")

    db = get_db_service(session)
    user_doc = db.find_one("users", {"id": token_data.user_id})
    if user_doc is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired refresh token")

    tokens = create_token_pair(user_doc["id"], user_doc["email"])
    _set_auth_cookies(response, tokens)
    tracker.start(user_doc["id"])
    return tokens
