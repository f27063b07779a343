"""User CRUD operations"""
from sqlmodel import Session

from storefront.models import User


def get_by_id(*, session: Session, user_id: str) -> User | None:
    """Fetch a user by primary key"""
    return session.get(User, user_id)
