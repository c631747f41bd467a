"""
Audit ledger for contextgate.

Every grant, denial, revocation and expiry is appended to the ledger and
forwarded to the registered audit sinks. The ledger is append-only and never
pruned; sinks receive each entry fire-and-forget.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
import asyncio
import csv
import io
import json
import logging

import aiofiles

from ..common.utils import generate_id, get_current_time

if TYPE_CHECKING:
    from ..authz.types import EvaluationResult, Permission, PermissionRequest, RequestContext


logger = logging.getLogger(__name__)


class AuditResult(Enum):
    """Outcome recorded by an audit entry."""
    GRANTED = "granted"
    DENIED = "denied"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable record of a decision or state transition."""
    user_id: str
    action: str
    resource_type: str
    result: AuditResult
    reason: str
    id: str = field(default_factory=lambda: generate_id("audit_"))
    timestamp: datetime = field(default_factory=get_current_time)
    resource_id: Optional[str] = None
    context: Optional["RequestContext"] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'user_id': self.user_id,
            'action': self.action,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'result': self.result.value,
            'reason': self.reason,
            'context': self.context.to_dict() if self.context else None,
            'metadata': self.metadata
        }


class AuditSink(ABC):
    """External consumer of audit entries"""

    @abstractmethod
    async def record(self, entry: AuditLogEntry) -> None:
        """Accept an audit entry"""
        pass

    async def close(self) -> None:
        """Release resources held by the sink"""
        pass


class MemoryAuditSink(AuditSink):
    """Collects entries in memory, for development and testing"""

    def __init__(self):
        self.entries: List[AuditLogEntry] = []

    async def record(self, entry: AuditLogEntry) -> None:
        self.entries.append(entry)


class LoggingAuditSink(AuditSink):
    """Writes entries to a standard library logger"""

    def __init__(self, logger_name: str = "contextgate.audit.trail", level: int = logging.INFO):
        self._logger = logging.getLogger(logger_name)
        self._level = level

    async def record(self, entry: AuditLogEntry) -> None:
        self._logger.log(
            self._level,
            f"{entry.result.value} {entry.action} user={entry.user_id} "
            f"resource={entry.resource_type}:{entry.resource_id or '*'} reason={entry.reason}"
        )


class FileAuditSink(AuditSink):
    """Appends entries to a JSON-lines file"""

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._lock = asyncio.Lock()

    async def record(self, entry: AuditLogEntry) -> None:
        line = json.dumps(entry.to_dict(), default=str) + "\n"
        async with self._lock:
            async with aiofiles.open(self.file_path, "a", encoding="utf-8") as f:
                await f.write(line)


class AuditLogger:
    """
    Append-only audit ledger shared by the permission and consent stores.
    """

    def __init__(self, sinks: Optional[List[AuditSink]] = None):
        self._entries: List[AuditLogEntry] = []
        self._sinks: List[AuditSink] = list(sinks or [])
        self._lock = asyncio.Lock()

    def add_sink(self, sink: AuditSink) -> None:
        """Register an additional sink"""
        self._sinks.append(sink)

    async def log(self, entry: AuditLogEntry) -> AuditLogEntry:
        """Append an entry and forward it to every sink"""
        async with self._lock:
            self._entries.append(entry)

        for sink in self._sinks:
            try:
                await sink.record(entry)
            except Exception as e:
                logger.error(f"Audit sink {type(sink).__name__} failed for {entry.id}: {e}")

        return entry

    async def log_permission_grant(self, permission: "Permission") -> AuditLogEntry:
        """Log permission grant"""
        return await self.log(AuditLogEntry(
            user_id=permission.user_id,
            action=f"grant_permission_{getattr(permission.action, 'value', permission.action)}",
            resource_type=permission.resource_type,
            resource_id=permission.resource_id,
            result=AuditResult.GRANTED,
            reason=f"Permission granted by {permission.granted_by}",
            metadata={
                'permission_id': permission.id,
                'granted_by': permission.granted_by,
                'expires_at': permission.expires_at.isoformat() if permission.expires_at else None,
                'conditions': [c.to_dict() for c in permission.conditions]
            }
        ))

    async def log_permission_revocation(self, permission: "Permission", revoked_by: str) -> AuditLogEntry:
        """Log permission revocation"""
        return await self.log(AuditLogEntry(
            user_id=permission.user_id,
            action=f"revoke_permission_{getattr(permission.action, 'value', permission.action)}",
            resource_type=permission.resource_type,
            resource_id=permission.resource_id,
            result=AuditResult.REVOKED,
            reason=f"Permission revoked by {revoked_by}",
            metadata={
                'permission_id': permission.id,
                'revoked_by': revoked_by,
                'originally_granted_by': permission.granted_by,
                'originally_granted_at': permission.granted_at.isoformat()
            }
        ))

    async def log_permission_expiry(self, permission: "Permission") -> AuditLogEntry:
        """Log removal of an expired permission"""
        return await self.log(AuditLogEntry(
            user_id=permission.user_id,
            action=f"expire_permission_{getattr(permission.action, 'value', permission.action)}",
            resource_type=permission.resource_type,
            resource_id=permission.resource_id,
            result=AuditResult.EXPIRED,
            reason=f"Permission expired at {permission.expires_at.isoformat()}",
            metadata={'permission_id': permission.id, 'granted_by': permission.granted_by}
        ))

    async def log_permission_check(self, request: "PermissionRequest",
                                   result: "EvaluationResult") -> AuditLogEntry:
        """Log permission check"""
        action = getattr(request.action, 'value', request.action)
        return await self.log(AuditLogEntry(
            user_id=request.user_id or "",
            action=f"check_permission_{action}",
            resource_type=request.resource_type or "",
            resource_id=request.resource_id,
            result=AuditResult.GRANTED if result.granted else AuditResult.DENIED,
            reason=result.reason,
            context=request.context,
            metadata={
                'purpose': request.purpose,
                'outcome': result.outcome.value,
                'permission_id': result.permission_id,
                'failed_conditions': [c.to_dict() for c in result.failed_conditions]
            }
        ))

    async def log_consent_event(self, user_id: str, consent_id: str, result: AuditResult,
                                purpose: str, data_types: List[str], requester: str,
                                reason: str, context: Optional["RequestContext"] = None) -> AuditLogEntry:
        """Log a consent transition"""
        return await self.log(AuditLogEntry(
            user_id=user_id,
            action=f"consent_{result.value}",
            resource_type="consent",
            resource_id=consent_id,
            result=result,
            reason=reason,
            context=context,
            metadata={
                'purpose': purpose,
                'data_types': list(data_types),
                'requester': requester
            }
        ))

    @staticmethod
    def _newest_first(entries: List[AuditLogEntry], limit: Optional[int] = None) -> List[AuditLogEntry]:
        ordered = sorted(entries, key=lambda e: e.timestamp, reverse=True)
        return ordered[:limit] if limit else ordered

    def get_user_audit_log(self, user_id: str, limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Get audit log entries for a user, newest first"""
        return self._newest_first([e for e in self._entries if e.user_id == user_id], limit)

    def get_resource_audit_log(self, resource_type: str, resource_id: Optional[str] = None,
                               limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Get audit log entries for a resource type or instance"""
        return self._newest_first([
            e for e in self._entries
            if e.resource_type == resource_type and (not resource_id or e.resource_id == resource_id)
        ], limit)

    def get_audit_log_by_time_range(self, start_time: datetime, end_time: datetime) -> List[AuditLogEntry]:
        """Get audit log entries within a time range (inclusive)"""
        return self._newest_first([
            e for e in self._entries if start_time <= e.timestamp <= end_time
        ])

    def get_audit_log_by_action(self, action: str, limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Get entries whose action contains the given fragment"""
        return self._newest_first([e for e in self._entries if action in e.action], limit)

    def get_failed_attempts(self, user_id: Optional[str] = None,
                            limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Get denied decisions, optionally for one user"""
        return self._newest_first([
            e for e in self._entries
            if e.result == AuditResult.DENIED and (not user_id or e.user_id == user_id)
        ], limit)

    def get_audit_stats(self) -> Dict[str, Any]:
        """Counts by result, action and resource type, plus activity in the last day"""
        stats = {
            'total_entries': len(self._entries),
            'entries_by_result': {},
            'entries_by_action': {},
            'entries_by_resource_type': {},
            'recent_activity': 0
        }
        one_day_ago = get_current_time() - timedelta(days=1)

        for entry in self._entries:
            by_result = stats['entries_by_result']
            by_result[entry.result.value] = by_result.get(entry.result.value, 0) + 1
            by_action = stats['entries_by_action']
            by_action[entry.action] = by_action.get(entry.action, 0) + 1
            by_type = stats['entries_by_resource_type']
            by_type[entry.resource_type] = by_type.get(entry.resource_type, 0) + 1
            if entry.timestamp > one_day_ago:
                stats['recent_activity'] += 1

        return stats

    def export_audit_log(self, format: str = "json") -> str:
        """Export the ledger for compliance review as JSON or CSV"""
        if format == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(['id', 'timestamp', 'user_id', 'action', 'resource_type',
                             'resource_id', 'result', 'reason'])
            for e in self._entries:
                writer.writerow([e.id, e.timestamp.isoformat(), e.user_id, e.action,
                                 e.resource_type, e.resource_id or '', e.result.value, e.reason])
            return buffer.getvalue()

        if format == "json":
            return json.dumps([e.to_dict() for e in self._entries], indent=2, default=str)

        raise ValueError(f"Unsupported export format: {format}")

    @property
    def size(self) -> int:
        return len(self._entries)

    async def close(self) -> None:
        """Close every sink"""
        for sink in self._sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.error(f"Failed to close audit sink {type(sink).__name__}: {e}")


def create_audit_logger(sink_type: str = "memory", **kwargs) -> AuditLogger:
    """
    Factory function to create an audit ledger with one sink

    Args:
        sink_type: "memory", "logging" or "file"
        **kwargs: file_path for the file sink
    """
    if sink_type == "memory":
        return AuditLogger([MemoryAuditSink()])
    elif sink_type == "logging":
        return AuditLogger([LoggingAuditSink()])
    elif sink_type == "file":
        return AuditLogger([FileAuditSink(kwargs.get("file_path", "audit.log"))])
    raise ValueError(f"Unknown audit sink type: {sink_type}")
