from typing import List, Literal, Optional

from pydantic import BaseModel


class UploadAccepted(BaseModel):
    user_id: str
    filename: str
    status: Literal["accepted"] = "accepted"


class JobStatus(BaseModel):
    """Progress and outcome of the latest book submitted by one user."""

    user_id: str
    filename: str
    state: Literal["processing", "done", "failed", "cancelled"]
    pages: List[str] = []
    detail: Optional[str] = None
