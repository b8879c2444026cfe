"""
Structured Logging Configuration Module

Provides JSON-formatted structured logging for ledger and scheduler operations.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""
    
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "user_id": getattr(record, 'user_id', None),
            "action": getattr(record, 'action', None),
            "loan_id": getattr(record, 'loan_id', None),
            "extra": getattr(record, 'extra', None)
        }
        
        # Remove None values
        log_entry = {k: v for k, v in log_entry.items() if v is not None}
        
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
            
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "loan_tracker",
                  log_format: str = "json") -> logging.Logger:
    """
    Setup structured logging for the application.
    
    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the root application logger
        log_format: "json" for structured output, anything else for plain text
        
    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    
    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    
    return logger


def get_logger(name: str = "loan_tracker") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               loan_id: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log an action with structured data.
    
    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        user_id: ID of the user performing the action
        action: Action being performed
        loan_id: Loan being acted upon
        extra: Additional structured data
    """
    fields = {}
    if user_id:
        fields["user_id"] = user_id
    if action:
        fields["action"] = action
    if loan_id:
        fields["loan_id"] = loan_id
    if extra:
        fields["extra"] = extra
    
    logger.log(getattr(logging, level.upper()), message, extra=fields)
