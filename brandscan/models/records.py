"""Brand and user records owned by the account side of the product."""

from sqlalchemy import Column, DateTime, Text

from brandscan.database import Base, utcnow


class Brand(Base):
    """Brand whose visibility is analyzed."""

    __tablename__ = "brands"

    brand_id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    owner_id = Column(Text, nullable=False)
    category = Column(Text)
    region = Column(Text)
    use_case = Column(Text)
    competitors = Column(Text)
    created_at = Column(DateTime, default=utcnow)


class User(Base):
    """User who can start analyses and receives notifications."""

    __tablename__ = "users"

    user_id = Column(Text, primary_key=True)
    email = Column(Text, nullable=False)
    name = Column(Text)
    created_at = Column(DateTime, default=utcnow)
