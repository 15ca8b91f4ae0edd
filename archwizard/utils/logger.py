# archwizard/utils/logger.py
import logging
import os
import sys
import threading
from contextlib import contextmanager
from typing import Iterator, Set

from pydantic import SecretStr
from rich.console import Console
from rich.logging import RichHandler
from rich.status import Status
from rich.text import Text
from rich.theme import Theme

from archwizard.utils.exceptions import InstallerError

# --- 1. Custom Log Levels ---
# Must be registered before the logger class is installed
SECTION_LEVEL_NUM = 25
EXECUTE_LEVEL_NUM = 26
logging.addLevelName(SECTION_LEVEL_NUM, 'SECTION')
logging.addLevelName(EXECUTE_LEVEL_NUM, 'EXECUTE')

MASK = "********"

INSTALLER_THEME = Theme({"section": "bold yellow"})


class AppLogger(logging.Logger):
    """
    logging.Logger with two extra levels: SECTION marks the start of an
    installation stage, EXECUTE records the lifecycle of one external command.
    """

    def section(self, msg, *args, **kwargs):
        if self.isEnabledFor(SECTION_LEVEL_NUM):
            self._log(SECTION_LEVEL_NUM, msg, args, **kwargs)

    def execute(self, msg, *args, **kwargs):
        if self.isEnabledFor(EXECUTE_LEVEL_NUM):
            self._log(EXECUTE_LEVEL_NUM, msg, args, **kwargs)


logging.setLoggerClass(AppLogger)


# --- 2. File Output ---

class FileFormatter(logging.Formatter):
    """
    Column-aligned file format. Workers log from their own threads, so every
    line carries the thread name next to the logger name.
    """

    FORMAT = ('%(asctime)s - %(levelname)-9s - %(name)-15s - %(threadName)-12s - '
              '%(filename)-20s:%(lineno)-5d - %(message)s')

    def __init__(self):
        super().__init__(self.FORMAT)


# --- 3. Filters ---

class ExecuteFilter(logging.Filter):
    """
    Keeps EXECUTE records off the console: execution_step already shows the
    running and finished state of a command there.
    """

    def filter(self, record):
        return record.levelno != EXECUTE_LEVEL_NUM


class SecretFilter(logging.Filter):
    """Replaces every registered secret in a record's final message with MASK."""

    def __init__(self):
        super().__init__()
        self._secrets: Set[str] = set()
        self._lock = threading.Lock()

    def add(self, secret: SecretStr) -> None:
        value = secret.get_secret_value()
        if value:
            with self._lock:
                self._secrets.add(value)

    @property
    def active(self) -> bool:
        return bool(self._secrets)

    def mask(self, text: str) -> str:
        with self._lock:
            secrets = sorted(self._secrets, key=len, reverse=True)
        for value in secrets:
            text = text.replace(value, MASK)
        return text

    def filter(self, record):
        if self._secrets:
            record.msg = self.mask(record.getMessage())
            record.args = None
        return True


# --- 4. RichAppLogger Wrapper ---

class RichAppLogger:
    """
    Console presentation (rich) on top of an AppLogger. Everything written to
    the console by this wrapper or by the logger passes the same secret mask.
    """

    def __init__(self, console: Console, logger: AppLogger, secrets: SecretFilter):
        self.console = console
        self.logger: AppLogger = logger
        self.secrets = secrets
        self.console.push_theme(INSTALLER_THEME)

    def redact(self, *secrets: SecretStr) -> None:
        """Masks these values in all later log and console output."""
        for secret in secrets:
            self.secrets.add(secret)

    def section(self, message: str, *args, **kwargs):
        """Stage header: printed on the console, recorded at SECTION level in the file."""
        message = self.secrets.mask(message)
        self.console.print(Text(f"SECTION: {message}", style="section"))
        self.logger.section(f"SECTION: {message}", *args, **kwargs)

    @contextmanager
    def execution_step(self, message: str) -> Iterator[Status]:
        """
        Shows a spinner while the wrapped command runs, then replaces it with
        [COMPLETED], [CRITICAL] or [FAILED].

        InstallerError (failed command, missing device, rejected plan) is an
        expected outcome and becomes CRITICAL without a console traceback. Any
        other exception is FAILED and gets a rich traceback. The exception is
        always re-raised.
        """
        message = self.secrets.mask(message)
        with self.console.status(f"[bold green]...[/] [RUNNING] {message}", spinner="dots") as status:
            self.logger.execute(f"[RUNNING] {message}")
            try:
                yield status
            except Exception as e:
                is_critical = isinstance(e, InstallerError)
                tag = "[CRITICAL]" if is_critical else "[FAILED]"

                self.console.print(f"[bold red]✘ {tag}[/bold red] {message}")
                self.logger.execute(f"{tag} {message}")
                self.logger.exception(f"Exception during execution step: {message}")

                if not is_critical:
                    self.console.print("\n[bold red]Traceback (most recent call last):[/bold red]")
                    self.console.print_exception(show_locals=not self.secrets.active)
                raise

            self.console.print(f"[green]✔ [COMPLETED][/green] {message}")
            self.logger.execute(f"[COMPLETED] {message}")

    # --- Pass-through levels ---

    def info(self, message, *args, **kwargs):
        self.logger.info(message, *args, **kwargs)

    def warning(self, message, *args, **kwargs):
        self.logger.warning(message, *args, **kwargs)

    def error(self, message, *args, **kwargs):
        self.logger.error(message, *args, **kwargs)

    def debug(self, message, *args, **kwargs):
        self.logger.debug(message, *args, **kwargs)

    def critical(self, message, *args, **kwargs):
        self.logger.critical(message, *args, **kwargs)

    def exception(self, message, *args, **kwargs):
        """ERROR with traceback in the file, plus a rich traceback on the console."""
        self.logger.exception(message, *args, **kwargs)
        self.console.print(f"[bold red]FATAL ERROR: {self.secrets.mask(message)}[/bold red]")
        # locals of the failing frame may hold credentials
        self.console.print_exception(show_locals=not self.secrets.active)


# --- 5. Initialization Routine ---

def initialize_app_logger(
    app_name: str,
    log_directory: str = "logs",
    log_file_name: str = "archwizard.log",
    file_log_level: int = logging.DEBUG,
    console_log_level: int = logging.INFO,
) -> RichAppLogger:
    """
    Builds (or rebuilds) the named logger: a DEBUG file log under
    `log_directory` and a RichHandler on stderr at `console_log_level`.
    Calling it again for the same name replaces the handlers.
    """
    logger: AppLogger = logging.getLogger(app_name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    for old_filter in logger.filters[:]:
        logger.removeFilter(old_filter)

    secrets = SecretFilter()
    logger.addFilter(secrets)

    os.makedirs(log_directory, exist_ok=True)
    file_handler = logging.FileHandler(os.path.join(log_directory, log_file_name), encoding='utf-8')
    file_handler.setLevel(file_log_level)
    file_handler.setFormatter(FileFormatter())
    logger.addHandler(file_handler)

    # stdout stays free for command output (plan listings, summaries)
    console = Console(file=sys.stderr, soft_wrap=True)
    rich_handler = RichHandler(
        console=console,
        show_time=False,
        show_level=True,
        show_path=False,
        keywords=[],
        level=console_log_level
    )
    rich_handler.addFilter(ExecuteFilter())
    logger.addHandler(rich_handler)

    return RichAppLogger(console, logger, secrets)
