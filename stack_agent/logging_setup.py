import gzip
import logging
import shutil
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from stack_agent.settings import env

_MARKER = "_stack_agent_logging_configured"


class GzipRollingFileHandler(logging.FileHandler):
    """
    Writes <name>.log and rolls it into <name>.<YYYY-MM-DD>.<n>.log.gz when the
    day changes or the file grows past max_bytes. Rolled files older than
    max_history_days are removed, oldest first once total_cap_bytes is exceeded.
    """

    def __init__(
        self,
        log_dir: str,
        name: str = "stack-agent",
        max_bytes: int = 50 * 1024 * 1024,
        max_history_days: int = 14,
        total_cap_bytes: int = 1024 * 1024 * 1024,
    ):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.base_name = name
        self.max_bytes = max(1, int(max_bytes))
        self.max_history_days = max(1, int(max_history_days))
        self.total_cap_bytes = max(0, int(total_cap_bytes))
        self._day = date.today()
        super().__init__(self.log_dir / f"{name}.log", mode="a", encoding="utf-8")
        self._prune()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if self._should_roll():
                self._roll()
        except OSError:
            self.handleError(record)
        super().emit(record)

    def _should_roll(self) -> bool:
        if date.today() != self._day:
            return True
        path = Path(self.baseFilename)
        return path.exists() and path.stat().st_size >= self.max_bytes

    def _roll(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None
        active = Path(self.baseFilename)
        if active.exists() and active.stat().st_size > 0:
            day = self._day.isoformat()
            index = len(list(self.log_dir.glob(f"{self.base_name}.{day}.*.log.gz")))
            target = self.log_dir / f"{self.base_name}.{day}.{index}.log.gz"
            with open(active, "rb") as f_in, gzip.open(target, "wb") as f_out:
                shutil.copyfileobj(f_in, f_out)
            active.unlink()
        self._day = date.today()
        self._prune()

    def _rolled_files(self) -> List[Tuple[str, Path]]:
        files = []
        for p in self.log_dir.glob(f"{self.base_name}.*.*.log.gz"):
            parts = p.name[len(self.base_name) + 1 :].split(".")
            files.append((parts[0], p))
        return sorted(files)

    def _prune(self) -> None:
        cutoff = (datetime.now() - timedelta(days=self.max_history_days)).date().isoformat()
        kept = []
        for day, p in self._rolled_files():
            if day < cutoff:
                p.unlink(missing_ok=True)
            else:
                kept.append(p)
        if self.total_cap_bytes <= 0:
            return
        total = sum(p.stat().st_size for p in kept)
        for p in kept:
            if total <= self.total_cap_bytes:
                break
            total -= p.stat().st_size
            p.unlink(missing_ok=True)


def setup_logging(service_name: str = "stack-agent", log_dir: Optional[str] = None) -> None:
    """
    Console logging always; file logging only when STACK_AGENT_LOG_DIR (or
    log_dir) is set. Safe to call more than once.
    """
    root = logging.getLogger()
    root.setLevel(env("STACK_AGENT_LOG_LEVEL", "INFO").upper())
    if getattr(root, _MARKER, False):
        return

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(sh)

    log_dir = log_dir or env("STACK_AGENT_LOG_DIR")
    if log_dir:
        fh = GzipRollingFileHandler(
            log_dir=log_dir,
            name=service_name,
            max_bytes=int(env("STACK_AGENT_LOG_MAX_FILE_SIZE_BYTES", str(50 * 1024 * 1024))),
            max_history_days=int(env("STACK_AGENT_LOG_MAX_HISTORY_DAYS", "14")),
            total_cap_bytes=int(env("STACK_AGENT_LOG_TOTAL_SIZE_CAP_BYTES", str(1024 * 1024 * 1024))),
        )
        fh.setFormatter(fmt)
        root.addHandler(fh)
    setattr(root, _MARKER, True)
    logging.getLogger(__name__).info("logging configured: service=%s dir=%s", service_name, log_dir or "-")
