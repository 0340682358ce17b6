from typing import Optional

from pydantic import BaseModel, Field


class PublishRequest(BaseModel):
    issue_id: str = Field(..., min_length=1)
    pages: Optional[str] = Field(None, description="页码范围，例如 12-25")
    assign_doi_if_missing: bool = False
