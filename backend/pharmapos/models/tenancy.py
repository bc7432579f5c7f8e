from __future__ import annotations

from ..extensions import db


class Branch(db.Model):
    """
    A physical pharmacy location.

    Products (and everything hanging off them) are partitioned by branch_id.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    address = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r}>"
