# portal_api/src/auth/routes.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status, Response, Request, Cookie

from .controller import AuthController
from .schema import (
    JWTClaims,
    LoginRequest,
    PasswordUpdateRequest,
    StaffUserCreationRequest,
    UserResponse,
)
from ...middlewares.jwt_auth import JWTAuthController, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

auth_controller = AuthController()
jwt_auth = JWTAuthController()

@router.post("/login")
async def login(
    request: LoginRequest,
    response: Response
):
    """Login with JWT cookie authentication"""
    user_data = await auth_controller.login(request)

    access_token = jwt_auth.create_access_token(
        user_data["user_id"],
        user_data["role_entity_id"],
        user_data["role"],
        user_data["email"],
    )
    refresh_token = jwt_auth.create_refresh_token(
        user_data["user_id"],
        user_data["role_entity_id"]
    )

    csrf_token = jwt_auth.set_auth_cookies(response, access_token, refresh_token)
    logger.info(f"Login for {user_data['email']} ({user_data['role'].value})")

    return {
        "success": True,
        "user": {
            "id": user_data["user_id"],
            "email": user_data["email"],
            "name": user_data["name"],
            "role": user_data["role"].value,
            "role_entity_id": user_data["role_entity_id"],
            "requires_password_change": user_data["requires_password_change"],
        },
        "csrf_token": csrf_token
    }

@router.post("/logout")
async def logout(
    response: Response,
    access_token: str = Cookie(None, alias="access_token"),
    refresh_token: str = Cookie(None, alias="refresh_token")
):
    """Logout and revoke tokens (CSRF is checked by the middleware)"""
    if access_token:
        jwt_auth.revoke_token(access_token, "access")
    if refresh_token:
        jwt_auth.revoke_token(refresh_token, "refresh")

    jwt_auth.clear_auth_cookies(response)
    return {"success": True, "message": "Logged out successfully"}

@router.get("/me")
async def get_current_user_info(request: Request):
    """Current user from the JWT; unauthenticated callers get authenticated=False"""
    try:
        user = jwt_auth.get_current_user(request)
    except HTTPException:
        return {"authenticated": False}

    doc = auth_controller.db.users.find_one(
        {"id": user.user_id}, {"_id": 0, "name": 1, "requires_password_change": 1}
    ) or {}
    return {
        "user_id": user.user_id,
        "role_entity_id": user.role_entity_id,
        "role": user.role,
        "email": user.email,
        "name": doc.get("name"),
        "requires_password_change": bool(doc.get("requires_password_change")),
        "authenticated": True,
    }

@router.post("/refresh")
async def refresh_token(
    response: Response,
    refresh_token: str = Cookie(None, alias="refresh_token")
):
    """Refresh access token using refresh token cookie"""
    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Refresh token is required"
        )

    try:
        token_data = jwt_auth.verify_refresh_token(refresh_token)
        user_data = await auth_controller.get_user_data_for_token(token_data["user_id"])
        access_token = jwt_auth.create_access_token(
            token_data["user_id"],
            user_data["role_entity_id"],
            user_data["role"],
            user_data["email"],
        )
        csrf_token = jwt_auth.set_auth_cookies(response, access_token, refresh_token)
        return {"success": True, "csrf_token": csrf_token}
    except HTTPException:
        jwt_auth.clear_auth_cookies(response)
        raise

@router.post("/password/update")
async def update_password(
    request: PasswordUpdateRequest,
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    return await auth_controller.update_password(current_user.user_id, request)

@router.post("/users", response_model=UserResponse)
async def create_staff_user(
    request: StaffUserCreationRequest,
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Admins create operator (or other admin) accounts"""
    require_admin(current_user)
    return await auth_controller.create_staff_user(request)

@router.get("/users", response_model=List[UserResponse])
async def list_staff_users(current_user: JWTClaims = Depends(jwt_auth.get_current_user)):
    require_admin(current_user)
    return await auth_controller.list_staff_users()

@router.patch("/users/{user_id}/active")
async def set_user_active(
    user_id: str,
    is_active: bool,
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_admin(current_user)
    if user_id == current_user.user_id and not is_active:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    return await auth_controller.set_active(user_id, is_active)
