"""
worksync
Backing document store model.

Models:
    - StoredDocument: one JSON record of a named collection, keyed by doc_id
"""

from datetime import datetime, timezone

from worksync.models import db


class StoredDocument(db.Model):
    """
    Document store record.

    The store has no schema beyond "collection of records keyed by id";
    the record body lives in ``data`` exactly as it was written.
    """

    __tablename__ = "documents"
    __table_args__ = (
        db.UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    collection = db.Column(db.String(50), nullable=False, index=True)
    doc_id = db.Column(db.String(64), nullable=False)
    data = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<StoredDocument {self.collection}/{self.doc_id}>"
