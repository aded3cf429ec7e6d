from __future__ import annotations

from typing import Optional, Protocol

from sqlmodel import Field, Session, SQLModel
from sqlalchemy import Column, ForeignKey, Integer

from .errors import NotFoundError, ValidationError


class Family(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str


class FamilyMember(SQLModel, table=True):
    """Database representation of a family member."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("family.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    name: str
    role: str = "CHILD"


class MemberDirectory(Protocol):
    """Read-only member lookup used to check family membership."""

    def find_member(self, member_id: int) -> Optional[FamilyMember]: ...


class MemberStore:
    """Helper for :class:`Family` and :class:`FamilyMember` rows."""

    def __init__(self, session: Session):
        self.session = session

    def create_family(self, name: str) -> Family:
        if not name or not name.strip():
            raise ValidationError("Family name is required")
        family = Family(name=name.strip())
        self.session.add(family)
        self.session.flush()
        return family

    def create_member(self, family_id: int, name: str, role: str = "CHILD") -> FamilyMember:
        if self.find_family(family_id) is None:
            raise NotFoundError(f"Family not found: {family_id}")
        member = FamilyMember(family_id=family_id, name=name, role=role)
        self.session.add(member)
        self.session.flush()
        return member

    def find_family(self, family_id: int) -> Optional[Family]:
        return self.session.get(Family, family_id)

    def find_member(self, member_id: int) -> Optional[FamilyMember]:
        return self.session.get(FamilyMember, member_id)
