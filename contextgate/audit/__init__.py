"""
Audit module initialization
"""

from .logger import (
    AuditResult,
    AuditLogEntry,
    AuditSink,
    MemoryAuditSink,
    LoggingAuditSink,
    FileAuditSink,
    AuditLogger,
    create_audit_logger,
)

__all__ = [
    "AuditResult",
    "AuditLogEntry",
    "AuditSink",
    "MemoryAuditSink",
    "LoggingAuditSink",
    "FileAuditSink",
    "AuditLogger",
    "create_audit_logger",
]
