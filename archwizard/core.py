# archwizard/core.py
import logging
from typing import Optional

from archwizard.utils.logger import RichAppLogger, initialize_app_logger

# A global variable to hold the initialized logger wrapper
# It starts as None and is set by the command-line callback
app_logger: Optional[RichAppLogger] = None


def setup_app_logger(log_directory: str = "logs", log_file_name: str = "archwizard.log",
                     verbose: bool = False) -> RichAppLogger:
    """Creates the process-wide logger (replacing any earlier one) and returns it."""
    global app_logger
    app_logger = initialize_app_logger(
        app_name="archwizard",
        log_directory=log_directory,
        log_file_name=log_file_name,
        console_log_level=logging.DEBUG if verbose else logging.INFO,
    )
    return app_logger
