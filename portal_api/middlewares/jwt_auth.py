import os
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Dict, Any

from fastapi import Response, Request, HTTPException, status
from jose import jwt, JWTError
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..src.auth.schema import UserRole, JWTClaims, STAFF_ROLES
from ..database.db import get_database
from ..config import get_settings

class JWTAuthController:
    """JWT access tokens in httpOnly cookies (or a Bearer header), refresh tokens in Mongo"""

    # Class-level singleton variables
    _instance = None
    _private_key = None
    _public_key = None
    _token_blocklist_global = set()

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super(JWTAuthController, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if getattr(self, "_initialised", False):
            return

        self.settings = get_settings()
        self.db = get_database()

        self.algorithm = self.settings.JWT_ALGORITHM
        self.access_token_expire_minutes = self.settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
        self.refresh_token_expire_days = self.settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS

        self.secure_cookie = self.settings.COOKIE_SECURE
        self.cookie_domain = self.settings.COOKIE_DOMAIN
        self.cookie_samesite = self.settings.COOKIE_SAMESITE

        self.access_token_cookie = self.settings.JWT_ACCESS_TOKEN_COOKIE_NAME
        self.refresh_token_cookie = self.settings.JWT_REFRESH_TOKEN_COOKIE_NAME
        self.csrf_cookie_name = self.settings.JWT_CSRF_COOKIE_NAME

        self._token_blocklist = JWTAuthController._token_blocklist_global

        self._load_or_generate_keys()
        self._initialised = True

    def _load_or_generate_keys(self):
        """Load RSA keys from the configured paths or generate a fresh pair"""
        if JWTAuthController._private_key and JWTAuthController._public_key:
            self.private_key = JWTAuthController._private_key
            self.public_key = JWTAuthController._public_key
            return

        private_key_path = self.settings.JWT_PRIVATE_KEY_PATH
        public_key_path = self.settings.JWT_PUBLIC_KEY_PATH

        if private_key_path and os.path.exists(private_key_path) and \
           public_key_path and os.path.exists(public_key_path):
            with open(private_key_path, "rb") as f:
                self.private_key = serialization.load_pem_private_key(f.read(), password=None)
            with open(public_key_path, "rb") as f:
                self.public_key = serialization.load_pem_public_key(f.read())
        else:
            # Keys generated here are lost on restart unless paths are configured
            self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
            self.public_key = self.private_key.public_key()

            if private_key_path and public_key_path:
                os.makedirs(os.path.dirname(private_key_path) or ".", exist_ok=True)
                os.makedirs(os.path.dirname(public_key_path) or ".", exist_ok=True)
                with open(private_key_path, "wb") as f:
                    f.write(self._private_pem())
                with open(public_key_path, "wb") as f:
                    f.write(self._public_pem())

        JWTAuthController._private_key = self.private_key
        JWTAuthController._public_key = self.public_key

    def _private_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        )

    def _public_pem(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )

    def create_access_token(self, user_id: str, role_entity_id: str, role: UserRole, email: str) -> str:
        """Create a JWT access token with minimal payload"""
        now = datetime.utcnow()
        claims = {
            "sub": user_id,
            "rid": role_entity_id,  # customer id for customers
            "rol": role.value if isinstance(role, UserRole) else role,
            "jti": str(uuid.uuid4()),
            "exp": now + timedelta(minutes=self.access_token_expire_minutes),
            "iat": now,
        }
        if email:
            claims["email"] = email

        return jwt.encode(claims, self._private_pem().decode("utf-8"), algorithm=self.algorithm)

    def create_refresh_token(self, user_id: str, role_entity_id: str) -> str:
        """Create a refresh token and store it in the database"""
        token = secrets.token_urlsafe(32)
        self.db.refresh_tokens.insert_one({
            "token": token,
            "user_id": user_id,
            "role_entity_id": role_entity_id,
            "expires_at": datetime.utcnow() + timedelta(days=self.refresh_token_expire_days),
            "is_active": True,
            "created_at": datetime.utcnow()
        })
        return token

    def _decode(self, token: str, verify_exp: bool = True) -> Dict[str, Any]:
        return jwt.decode(
            token,
            self._public_pem().decode("utf-8"),
            algorithms=[self.algorithm],
            options={"verify_exp": verify_exp}
        )

    def verify_access_token(self, token: str) -> JWTClaims:
        """Verify JWT access token and check it has not been revoked"""
        try:
            payload = self._decode(token)
        except JWTError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token: {str(e)}"
            )

        if payload.get("jti") in self._token_blocklist:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has been revoked"
            )

        return JWTClaims(
            user_id=payload["sub"],
            role_entity_id=payload["rid"],
            role=payload["rol"],
            email=payload.get("email", ""),
            exp=payload["exp"],
            iat=payload["iat"],
            jti=payload["jti"]
        )

    def verify_refresh_token(self, token: str) -> Dict[str, Any]:
        """Verify refresh token from database"""
        token_data = self.db.refresh_tokens.find_one({"token": token, "is_active": True})
        if not token_data:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid refresh token"
            )

        expires_at = token_data.get("expires_at")
        if expires_at and expires_at < datetime.utcnow():
            self.db.refresh_tokens.update_one({"token": token}, {"$set": {"is_active": False}})
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Refresh token expired"
            )

        return token_data

    def revoke_token(self, token: str, token_type: str = "access") -> None:
        if token_type == "access":
            try:
                jti = self._decode(token, verify_exp=False).get("jti")
            except JWTError:
                # Nothing to revoke on a token we cannot read
                return
            if jti:
                self._token_blocklist.add(jti)
        elif token_type == "refresh":
            self.db.refresh_tokens.update_one({"token": token}, {"$set": {"is_active": False}})

    def set_auth_cookies(self, response: Response, access_token: str, refresh_token: str) -> str:
        """Set httpOnly auth cookies plus a readable CSRF cookie; returns the CSRF token"""
        csrf_token = secrets.token_urlsafe(32)
        common = {
            "secure": self.secure_cookie,
            "samesite": self.cookie_samesite,
            "domain": self.cookie_domain,
            "path": "/",
        }

        response.set_cookie(
            key=self.access_token_cookie,
            value=access_token,
            httponly=True,
            max_age=self.access_token_expire_minutes * 60,
            **common
        )
        response.set_cookie(
            key=self.refresh_token_cookie,
            value=refresh_token,
            httponly=True,
            max_age=self.refresh_token_expire_days * 24 * 60 * 60,
            **common
        )
        response.set_cookie(
            key=self.csrf_cookie_name,
            value=csrf_token,
            httponly=False,
            max_age=self.access_token_expire_minutes * 60,
            **common
        )
        return csrf_token

    def clear_auth_cookies(self, response: Response):
        for cookie in (self.access_token_cookie, self.refresh_token_cookie, self.csrf_cookie_name):
            response.delete_cookie(key=cookie, path="/", domain=self.cookie_domain, secure=self.secure_cookie)

    def get_current_user(self, request: Request) -> JWTClaims:
        """Current user from the access token cookie or a Bearer header"""
        access_token = request.cookies.get(self.access_token_cookie)

        if not access_token:
            auth_header = request.headers.get("Authorization", "")
            if auth_header.startswith("Bearer "):
                access_token = auth_header[len("Bearer "):]

        if not access_token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required"
            )

        return self.verify_access_token(access_token)

    def verify_csrf_token(self, request: Request, csrf_token: str) -> bool:
        """Verify CSRF token matches the one in cookie"""
        cookie_csrf = request.cookies.get(self.csrf_cookie_name)

        if not csrf_token or not cookie_csrf or csrf_token != cookie_csrf:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="CSRF token validation failed"
            )
        return True


def require_staff(user: JWTClaims) -> JWTClaims:
    if user.role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff access required")
    return user


def require_admin(user: JWTClaims) -> JWTClaims:
    if user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
