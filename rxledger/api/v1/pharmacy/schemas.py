from pydantic import BaseModel, Field
from typing import Optional


class FillCreate(BaseModel):
    asset_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    holder_xpub: Optional[str] = None
