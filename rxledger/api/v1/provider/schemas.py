from pydantic import BaseModel, Field
from typing import Optional


class PrescribeRequest(BaseModel):
    prescriber_id: str = Field(..., min_length=1, max_length=255)
    patient_id: str = Field(..., min_length=1, max_length=255)
    medication: str = Field(..., min_length=1, max_length=255)
    strength: str = Field(..., min_length=1, max_length=100)
    route: str = Field(..., min_length=1, max_length=100)
    frequency: str = Field(..., min_length=1, max_length=100)
    refills: int = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    pharmacy: str = Field(..., min_length=1, max_length=255)
    issuer_xpub: Optional[str] = None
