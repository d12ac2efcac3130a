from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    String,
    Float,
    JSON,
)


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class Document(Base):
    __tablename__ = "documents"
    # payments | passes | teams | users
    collection = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class UniqueClaim(Base):
    # one row per (collection, field, value); the primary key is the
    # uniqueness constraint, e.g. ("passes", "payment_id", order_id)
    __tablename__ = "unique_claims"
    collection = Column(String, primary_key=True)
    field = Column(String, primary_key=True)
    value = Column(String, primary_key=True)
    doc_id = Column(String, nullable=False)
