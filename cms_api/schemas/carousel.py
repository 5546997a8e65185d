from typing import Optional
from pydantic import BaseModel


class CarouselResponse(BaseModel):
    id: str
    title: str
    description: str
    button_title: str
    link: str
    image: str
    created_at: str
    updated_at: Optional[str] = None
