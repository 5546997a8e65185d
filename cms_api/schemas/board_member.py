from typing import Optional
from pydantic import BaseModel


class BoardMemberResponse(BaseModel):
    id: str
    position: int
    title: str
    full_name: str
    linkedin_link: Optional[str] = None
    photo: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None
