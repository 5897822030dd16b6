"""
Logging Utility for the Exam Proctoring Service

Colored terminal output for request tracing plus structured helpers
for session lifecycle and proctoring events.
"""
import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional


# ============================================================================
# ANSI Colors for Terminal
# ============================================================================

class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    BG_RED = "\033[41m"


# ============================================================================
# Logger Configuration
# ============================================================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for terminal output."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.DIM + Colors.WHITE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BG_RED + Colors.WHITE,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        level_str = f"{color}{record.levelname:8}{Colors.RESET}"
        time_str = f"{Colors.DIM}{timestamp}{Colors.RESET}"
        name_str = f"{Colors.CYAN}{record.name}{Colors.RESET}"

        message = f"{time_str} {level_str} [{name_str}] {record.getMessage()}"

        if hasattr(record, "extra_data") and record.extra_data:
            for key, value in record.extra_data.items():
                message += f"\n    {Colors.DIM}|- {key}: {Colors.RESET}{value}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logger(name: str = "exam_proctoring", level: int = logging.INFO) -> logging.Logger:
    """Configure colored logger for terminal output."""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter())
    handler.setLevel(level)
    logger.addHandler(handler)

    return logger


api_logger = logging.getLogger("exam_proctoring.api")
proctor_logger = logging.getLogger("exam_proctoring.proctor")


# ============================================================================
# Service Logging
# ============================================================================

def log_error(error_type: str, message: str, request_id: Optional[str] = None):
    """Log error."""
    api_logger.error(f"{Colors.RED}{error_type}{Colors.RESET}: {message}")
    if request_id:
        api_logger.error(f"  Request ID: {request_id}")


def log_startup(service_name: str, port: int):
    """Log service startup."""
    print(f"\n{Colors.BOLD}{Colors.GREEN}{'='*60}{Colors.RESET}")
    print(f"{Colors.BOLD}{Colors.GREEN}  {service_name} STARTED{Colors.RESET}")
    print(f"{Colors.BOLD}{Colors.GREEN}{'='*60}{Colors.RESET}")
    print(f"  Running on: {Colors.CYAN}http://localhost:{port}{Colors.RESET}")
    print(f"  Docs: {Colors.CYAN}http://localhost:{port}/docs{Colors.RESET}")
    print(f"\n{Colors.DIM}Waiting for requests...{Colors.RESET}\n")


# ============================================================================
# Proctoring Logging
# ============================================================================

def log_proctor_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a proctoring event.

    Args:
        session_id: Exam session ID
        event_type: Type of event (session_start, event, violation, etc.)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    message = f"[PROCTOR] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    if level == "debug":
        proctor_logger.debug(message)
    elif level == "warning":
        proctor_logger.warning(message)
    elif level == "error":
        proctor_logger.error(message)
    else:
        proctor_logger.info(message)


def log_session_start(session_id: str, exam_id: str, student_id: str):
    """Log session start event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_start",
        details={"exam_id": exam_id, "student_id": student_id}
    )


def log_session_end(session_id: str, status: str, reason: Optional[str] = None):
    """Log session end event"""
    details = {"status": status}
    if reason:
        details["reason"] = reason
    log_proctor_event(
        session_id=session_id,
        event_type="session_end",
        details=details,
        level="warning" if status != "submitted" else "info"
    )


def log_violation(session_id: str, violation_type: str, severity: str, total: int):
    """Log a violation recorded by the escalation policy"""
    log_proctor_event(
        session_id=session_id,
        event_type="violation",
        details={"type": violation_type, "severity": severity, "total": total},
        level="warning"
    )


def log_critical_event(session_id: str, event: str, details: Optional[Dict[str, Any]] = None):
    """Log a critical proctoring event"""
    log_proctor_event(
        session_id=session_id,
        event_type=f"critical_{event}",
        details=details,
        level="warning"
    )
