"""
Module: fulfillment_kernel.models.user
Responsibility: ORM persistence for customers who own orders.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Email is unique (UNIQUE constraint uq_user_email).
    - Users are never deleted by the kernel; orders reference them by FK.
"""

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TimestampedBase


class User(TimestampedBase):
    """
    A customer identity.

    Only profile fields (name, address) are mutable.  The kernel itself only
    performs existence checks against this table.
    """

    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
        Index("idx_user_email", "email"),
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
    )

    address: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"
