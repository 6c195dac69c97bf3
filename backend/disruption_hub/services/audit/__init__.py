"""Disruption Hub - Audit trail"""
from .sink import AuditSink

__all__ = ["AuditSink"]
