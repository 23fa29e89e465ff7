"""
PR Result Model
Pydantic model for the outcome of opening a change request on the hosting service.
"""
from pydantic import BaseModel


class PrResult(BaseModel):
    branch_name: str
    pr_url: str
    pr_number: int
    merged: bool = False
