"""Logging utilities for storjcli modules."""

import logging

PACKAGE_LOGGERS = (
    'storjcli',
    'storjcli.api',
    'storjcli.keyring',
    'storjcli.transfer',
    'storjcli.upload',
    'storjcli.download',
)


def get_logger(name: str) -> logging.Logger:
    """Get a logger that automatically inherits from root logger.
    
    This ensures that loggers work with basicConfig() without needing
    explicit setup_logging() calls. The logger will:
    - Propagate to root logger (default behavior)
    - Only set a default level if root logger has no handlers
    
    Args:
        name: Logger name (typically 'storjcli.<area>')
        
    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.propagate = True
    
    # Only set default level if root logger has no handlers
    # (i.e., basicConfig hasn't been called yet)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logger.setLevel(logging.WARNING)
    
    return logger


def configure_logging(level: int = logging.INFO, handler: logging.Handler = None) -> None:
    """
    Configure every storjcli logger at the given level.
    
    Args:
        level: Logging level applied to the package loggers
        handler: Optional handler attached to the 'storjcli' root logger
    """
    existing = [
        name for name in logging.root.manager.loggerDict
        if name.startswith('storjcli.')
    ]
    for logger_name in set(PACKAGE_LOGGERS) | set(existing):
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        logger.propagate = True
    
    if handler is not None:
        root = logging.getLogger('storjcli')
        for old_handler in list(root.handlers):
            root.removeHandler(old_handler)
        handler.setLevel(level)
        root.addHandler(handler)
        root.propagate = False
