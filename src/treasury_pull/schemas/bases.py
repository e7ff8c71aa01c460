"""
Base Schema Models for the treasury pull service

Core Classes:
    - CanonicalModel: Pydantic base model with deterministic JSON serialization
    - TransactionStatus: Outcome of a submitted transaction

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class CanonicalModel(BaseModel):
    """
    Pydantic base model with canonical JSON serialization.

    Keys are sorted and whitespace is removed, so two equal models always
    serialize to the same bytes. Fields declare camelCase aliases for the wire
    format and can be populated by either name.

    Example:
        class MyModel(CanonicalModel):
            name: str
            value: int

        model = MyModel(name="test", value=123)
        canonical_json = model.to_canonical_json()  # '{"name":"test","value":123}'
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to a canonical JSON string (sorted keys, compact separators, aliases).
        """
        data = self.model_dump(mode="json", by_alias=True)
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to its wire dictionary (aliased keys, JSON-compatible values).
        """
        return self.model_dump(mode="json", by_alias=True)


class TransactionStatus(str, Enum):
    """
    Enumeration of possible transaction execution statuses.

    Values:
        SUCCESS: Transaction included with status 1
        FAILED: Transaction included but reverted
        PENDING: Broadcast, not yet included
    """
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
