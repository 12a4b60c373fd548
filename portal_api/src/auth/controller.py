from fastapi import HTTPException, status
from passlib.context import CryptContext
from datetime import datetime
from typing import Dict, Any, List, Optional
from pymongo.errors import DuplicateKeyError

from .schema import (
    LoginRequest,
    PasswordUpdateRequest,
    StaffUserCreationRequest,
    User,
    UserResponse,
    UserRole,
)
from ...database.db import get_database
from ...utils.helperFunctions import generate_unique_id

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

class AuthController:
    """Core authentication controller for user management"""

    def __init__(self):
        self.db = get_database()

    def hash_password(self, password: str) -> str:
        """Hash password using bcrypt"""
        return pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify password against hash"""
        return pwd_context.verify(plain_password, hashed_password)

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.db.users.find_one({"email": email.strip().lower()})

    def create_user(
        self,
        *,
        email: str,
        password: str,
        name: str,
        role: UserRole,
        role_entity_id: Optional[str] = None,
        requires_password_change: bool = False,
    ) -> User:
        """Insert a user row. Staff users point role_entity_id at themselves."""
        email = email.strip().lower()
        if self.find_user_by_email(email):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="User with this email already exists"
            )

        user_id = generate_unique_id("user")
        now = datetime.utcnow()
        user = User(
            id=user_id,
            email=email,
            password_hash=self.hash_password(password),
            name=name,
            role=role,
            role_entity_id=role_entity_id or user_id,
            requires_password_change=requires_password_change,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.users.insert_one(user.model_dump())
        except DuplicateKeyError:
            raise HTTPException(status_code=400, detail="Email already registered")
        return user

    def delete_user(self, user_id: str) -> None:
        self.db.users.delete_one({"id": user_id})

    async def login(self, request: LoginRequest) -> Dict[str, Any]:
        """Authenticate user and return user data"""
        user = self.find_user_by_email(request.email)
        if not user or not self.verify_password(request.password, user["password_hash"]):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect email or password"
            )

        if not user.get("is_active", True):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account is deactivated"
            )

        self.db.users.update_one(
            {"id": user["id"]},
            {"$set": {"last_login": datetime.utcnow()}}
        )

        return {
            "user_id": user["id"],
            "role_entity_id": user["role_entity_id"],
            "email": user["email"],
            "name": user.get("name"),
            "role": UserRole(user["role"]),
            "requires_password_change": bool(user.get("requires_password_change")),
        }

    async def get_user_data_for_token(self, user_id: str) -> Dict[str, Any]:
        """Get user data needed for token generation"""
        user = self.db.users.find_one({"id": user_id})
        if not user or not user.get("is_active", True):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found"
            )

        return {
            "role": UserRole(user["role"]),
            "role_entity_id": user["role_entity_id"],
            "email": user["email"],
        }

    async def update_password(self, user_id: str, request: PasswordUpdateRequest) -> Dict[str, str]:
        """Update user password and clear the forced-change flag"""
        user = self.db.users.find_one({"id": user_id})
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found"
            )

        if not self.verify_password(request.current_password, user["password_hash"]):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Current password is incorrect"
            )

        self.db.users.update_one(
            {"id": user_id},
            {"$set": {
                "password_hash": self.hash_password(request.new_password),
                "requires_password_change": False,
                "updated_at": datetime.utcnow(),
            }}
        )

        return {"message": "Password updated successfully"}

    async def create_staff_user(self, request: StaffUserCreationRequest) -> UserResponse:
        user = self.create_user(
            email=request.email,
            password=request.password,
            name=request.name,
            role=UserRole(request.role),
        )
        return UserResponse(**user.model_dump(exclude={"password_hash", "last_login"}))

    async def list_staff_users(self) -> List[UserResponse]:
        cursor = self.db.users.find(
            {"role": {"$in": [UserRole.ADMIN.value, UserRole.OPERATOR.value]}},
            {"_id": 0, "password_hash": 0}
        ).sort("created_at", 1)
        return [UserResponse(**doc) for doc in cursor]

    async def set_active(self, user_id: str, is_active: bool) -> Dict[str, Any]:
        result = self.db.users.update_one(
            {"id": user_id},
            {"$set": {"is_active": is_active, "updated_at": datetime.utcnow()}}
        )
        if result.matched_count == 0:
            raise HTTPException(status_code=404, detail="User not found")
        return {"success": True, "user_id": user_id, "is_active": is_active}
