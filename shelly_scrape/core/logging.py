"""
Logging configuration for shelly-scrape

Provides centralized logging setup for the scraper.
"""

import logging
import sys
from typing import Optional, TextIO


def setup_logging(level: str = "INFO", debug: bool = False, stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Setup logging configuration for shelly-scrape.
    
    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        debug: Enable debug output
        stream: Stream for log records (stdout when not given)
        
    Returns:
        Configured logger instance
    """
    numeric_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    
    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(stream or sys.stdout)
        ]
    )
    
    logger = logging.getLogger('shelly_scrape')
    logger.setLevel(numeric_level)
    
    # keep urllib3 connection chatter out of debug output
    if debug:
        logging.getLogger('urllib3').setLevel(logging.INFO)
    
    return logger


def get_logger(name: str = 'shelly_scrape') -> logging.Logger:
    """
    Get a logger instance.
    
    Args:
        name: Logger name
        
    Returns:
        Logger instance
    """
    return logging.getLogger(name)
