"""
Work template model.

Templates are owned by the catalog side of the pipeline; the scheduler only
reads is_active/last_used_at and stamps last_used_at after a successful run.
"""

from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from beatgen.core.typing import utc_now


class WorkTemplate(SQLModel, table=True):
    __tablename__ = "work_template"

    id: Optional[int] = Field(default=None, primary_key=True)
    category_name: str = Field(index=True)
    is_active: bool = Field(default=True, index=True)
    last_used_at: Optional[datetime] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utc_now)
