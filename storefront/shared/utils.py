from datetime import datetime
from decimal import Decimal
from typing import Optional, Generic, TypeVar, Any, List
from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017"
    MONGO_DB_NAME: str = "storefront_db"
    SECRET_KEY: str = "secret"
    ALGORITHM: str = "HS256"

    # Payment provider (Stripe)
    PAYMENT_API_URL: str = "https://api.stripe.com"
    PAYMENT_SECRET_KEY: str = ""
    PAYMENT_PUBLISHABLE_KEY: str = ""
    PAYMENT_WEBHOOK_SECRET: str = ""
    PAYMENT_WEBHOOK_TOLERANCE_SECONDS: int = 300
    PAYMENT_TIMEOUT_SECONDS: float = 10.0
    CURRENCY: str = "inr"
    MIN_CHARGE_AMOUNT: Decimal = Decimal("1.00")

    # Unpaid order expiry; 0 disables the sweep
    PENDING_ORDER_TTL_MINUTES: int = 0
    PENDING_ORDER_SWEEP_INTERVAL_SECONDS: int = 300

    RATE_LIMIT_ENABLED: bool = True
    EXPOSE_INTERNAL_ERRORS: bool = False
    CORS_ORIGINS: List[str] = ["*"]

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

# --- Authentication ---
# Tokens are issued by the auth service; this service only verifies them.
def verify_token(token: str, config: Settings = settings) -> dict:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise UnauthorizedException("Could not validate credentials")
    if not payload.get("sub"):
        raise UnauthorizedException("Invalid token payload")
    return payload

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None

class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class ValidationException(AppException):
    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

# State-incompatible requests share the 400 status with validation failures
class ConflictException(AppException):
    def __init__(self, detail: str = "Request conflicts with current state"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class PaymentProviderException(AppException):
    def __init__(self, detail: str = "Payment provider error", status_code: int = status.HTTP_502_BAD_GATEWAY):
        super().__init__(status_code=status_code, detail=detail)

class InternalServerException(AppException):
    def __init__(self, detail: str = "Internal server error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
