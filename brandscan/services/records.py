"""Read-only lookups of brand and user records."""

from sqlalchemy.orm import Session

from brandscan.models.records import Brand, User


class RecordNotFoundError(LookupError):
    """Brand or user record does not exist."""


class RecordProvider:
    """Looks up brand and user records by id."""

    def __init__(self, db: Session):
        self.db = db

    def get_brand(self, brand_id: str) -> Brand:
        brand = self.db.query(Brand).filter(Brand.brand_id == brand_id).first()
        if not brand:
            raise RecordNotFoundError(f"Brand {brand_id} not found")
        return brand

    def get_user(self, user_id: str) -> User:
        user = self.db.query(User).filter(User.user_id == user_id).first()
        if not user:
            raise RecordNotFoundError(f"User {user_id} not found")
        return user
