# credit_engine/schemas/downloads.py
from typing import Optional
from pydantic import BaseModel


class DownloadRequest(BaseModel):
    download_type: str = "docx"


class DownloadQuote(BaseModel):
    assignment_id: str
    requires_charge: bool
    will_charge: bool
    credit_cost: int
    balance: Optional[int] = None
