"""
Exam Proctoring Module

Watches in-progress exam sessions by detecting:
- Face absence and multiple faces
- Sustained speech and unusual audio patterns
- Tab switches and time away from the exam
- Connectivity loss and degraded network quality
- Disabled devices, developer tools and browser extensions

Findings are appended to the session log, folded into a live risk score
and, for security findings, escalated to forced termination.
"""

from .supervisor import MonitoringContext, MonitoringSupervisor

__all__ = ["MonitoringContext", "MonitoringSupervisor"]
