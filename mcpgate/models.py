from pydantic import BaseModel, Field
from typing import Dict, Any, List, Optional

class AuthorizeRequest(BaseModel):
    action: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    method: Optional[str] = None

class PolicyUpsertRequest(BaseModel):
    version: str = Field(min_length=1, max_length=64)
    rules: List[Dict[str, Any]] = Field(default_factory=list)
