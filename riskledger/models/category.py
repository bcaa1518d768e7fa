"""
Risk Ledger
Category lookup list.

Risks and opportunities reference a category by ``code``; the list itself
is managed outside the register (seeded by ``flask seed-categories``).
"""

from riskledger.models import db

CATEGORY_SCOPES = {"risk", "opportunity"}


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("scope", "code", name="uq_category_scope_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(20), nullable=False, comment="risk | opportunity")
    code = db.Column(db.String(50), nullable=False)
    label = db.Column(db.String(100), nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "scope": self.scope,
            "code": self.code,
            "label": self.label,
            "sort_order": self.sort_order,
        }

    def __repr__(self):
        return f"<Category {self.scope}:{self.code}>"
