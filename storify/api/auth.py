"""
Account API (cookie sessions).

- POST /api/auth/signup
- POST /api/auth/signin
- POST /api/auth/signout
- GET  /api/auth/me
"""
from fastapi import APIRouter, Depends, Request, Response

from storify.core.config import settings
from storify.core.errors import UnauthorizedError
from storify.core.identity import get_current_user_id, get_session_token
from storify.core.sessions import get_session_store
from storify.features.users.service import authenticate, create_user, get_user
from storify.models.user import SigninRequest, SignupRequest, User

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _start_session(response: Response, user: User) -> None:
    store = get_session_store()
    token = store.create(user.id)
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        token,
        max_age=store.ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.ENV.lower() == "production",
    )


@router.post("/signup")
def signup(body: SignupRequest, response: Response):
    user = create_user(body.email, body.password, body.name)
    _start_session(response, user)
    return {"user": user.model_dump(mode="json", by_alias=True)}


@router.post("/signin")
def signin(body: SigninRequest, response: Response):
    user = authenticate(body.email, body.password)
    _start_session(response, user)
    return {"user": user.model_dump(mode="json", by_alias=True)}


@router.post("/signout")
def signout(request: Request, response: Response):
    get_session_store().destroy(get_session_token(request))
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {"success": True}


@router.get("/me")
def me(user_id: str = Depends(get_current_user_id)):
    user = get_user(user_id)
    if user is None:
        raise UnauthorizedError("Unauthorized")
    return user.model_dump(mode="json", by_alias=True)
