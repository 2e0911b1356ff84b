"""
Module: stock_kernel.models.organization
Responsibility: ORM persistence for the tenancy boundary (Company) and the
    reporting scope (Project).  Both are reference data maintained by the
    surrounding CRUD application; the stock kernel only reads them to
    validate that items and scopes belong to the calling company.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Every project belongs to exactly one company (company_id NOT NULL).

Failure modes:
    - IntegrityError on a project whose company_id does not exist.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class Company(TrackedBase):
    """A tenant.  Every stock row is scoped to one company."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Company {self.id}: {self.name}>"


class Project(TrackedBase):
    """
    A construction project; the usual stock reporting scope.

    Contract:
        A project is visible to the stock kernel only through its company.
        Lookups always filter on (id, company_id) together.
    """

    __tablename__ = "projects"

    __table_args__ = (
        Index("idx_project_company", "company_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"
