from pydantic import BaseModel, EmailStr, validator, Field
from typing import Optional
from enum import Enum
from datetime import datetime


# ----- Enums -----
class UserRole(str, Enum):
    ADMIN = "admin"
    OPERATOR = "operator"
    CUSTOMER = "customer"

STAFF_ROLES = (UserRole.ADMIN, UserRole.OPERATOR)

# ----- Validators -----
def password_validator(v: str) -> str:
    """Staff and changed customer passwords; wholesale temp passwords are generated elsewhere."""
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters long')
    if not any(c.isupper() for c in v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not any(c.islower() for c in v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not any(c.isdigit() for c in v):
        raise ValueError('Password must contain at least one digit')
    return v

# ----- Request Models -----
class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    @validator("email")
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email address")
        return v

class PasswordUpdateRequest(BaseModel):
    current_password: str
    new_password: str

    _validate_new_password = validator('new_password', allow_reuse=True)(password_validator)

    @validator("new_password")
    def differs_from_current(cls, v: str, values) -> str:
        if v == values.get("current_password"):
            raise ValueError("New password must differ from the current one")
        return v

class StaffUserCreationRequest(BaseModel):
    """Customers get logins through wholesale approval, never through this request."""
    email: EmailStr
    password: str
    name: str = Field(..., min_length=1, max_length=120)
    role: UserRole = UserRole.OPERATOR

    _validate_password = validator('password', allow_reuse=True)(password_validator)

    @validator("role")
    def staff_role_only(cls, v: UserRole) -> UserRole:
        if v not in STAFF_ROLES:
            raise ValueError("Only admin or operator accounts can be created here")
        return v

# ----- Response Models -----
class UserResponse(BaseModel):
    id: str
    email: EmailStr
    name: str
    role: UserRole
    role_entity_id: str
    is_active: bool
    requires_password_change: bool = False
    created_at: datetime
    updated_at: datetime

# ----- Database Models -----
class User(BaseModel):
    """users collection row."""
    id: str
    email: EmailStr
    password_hash: str
    name: str
    role: UserRole
    # customer id for customers, own user id for staff
    role_entity_id: str
    is_active: bool = True
    # set for wholesale logins created with a temporary password
    requires_password_change: bool = False
    created_at: datetime
    updated_at: datetime
    last_login: Optional[datetime] = None

# ----- JWT Claims -----
class JWTClaims(BaseModel):
    user_id: str
    role_entity_id: str
    role: UserRole
    email: EmailStr
    exp: int
    iat: int
    jti: str

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def customer_id(self) -> Optional[str]:
        """The customer record behind a customer login; None for staff."""
        return self.role_entity_id if self.role == UserRole.CUSTOMER else None
