# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Audit trail entries for mutating engine operations."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class AuditOperation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"
    DISCONNECT = "DISCONNECT"
    RECORD_ACCESS = "RECORD_ACCESS"
    RECORD_OUTCOME = "RECORD_OUTCOME"
    RECOMPUTE = "RECOMPUTE"


@dataclass
class AuditLog:
    """One mutating operation, successful or not, against a scoped record."""

    operation: str
    scope: str
    # Memory, relationship or access event id
    target_id: str
    timestamp: float
    actor: str | None = None
    success: bool = True
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def matches(
        self,
        scope: str | None = None,
        operation: str | None = None,
        actor: str | None = None,
        target_id: str | None = None,
    ) -> bool:
        """True when every given criterion equals this entry's value."""
        criteria = {"scope": scope, "operation": operation, "actor": actor, "target_id": target_id}
        return all(getattr(self, name) == value for name, value in criteria.items() if value)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
