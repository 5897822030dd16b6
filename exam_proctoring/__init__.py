"""
Exam Proctoring Service

Exam session lifecycle, live proctoring of in-progress attempts and
post-exam review of the proctoring log.
"""

__version__ = "1.0.0"
