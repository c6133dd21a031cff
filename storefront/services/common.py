from storefront.models import UserRole, is_valid_id
from storefront.shared.utils import ValidationException


def require_valid_id(value: str, label: str) -> str:
    if not is_valid_id(value):
        raise ValidationException(f"Invalid {label} ID")
    return value


def is_admin(user: dict) -> bool:
    return user.get("role") == UserRole.ADMIN
