"""
Formosa CRM - Modelos ManyChat (sync masivo)
"""

from typing import List
from pydantic import BaseModel


class BulkSyncRequest(BaseModel):
    subscriber_ids: List[str]


class FindSubscribersRequest(BaseModel):
    phones: List[str] = []
    emails: List[str] = []
