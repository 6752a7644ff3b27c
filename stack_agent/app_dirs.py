import logging
import shutil
from pathlib import Path
from typing import Optional

from stack_agent import settings

log = logging.getLogger(__name__)


def _app_path(app_id: str, root: Optional[str] = None) -> Path:
    return Path(root or settings.STACK_APPS_DIR) / app_id


def get_app_directory(app_id: str, root: Optional[str] = None) -> Optional[str]:
    path = _app_path(app_id, root)
    return str(path) if path.is_dir() else None


def get_or_create_app_directory(app_id: str, root: Optional[str] = None) -> str:
    path = _app_path(app_id, root)
    path.mkdir(parents=True, exist_ok=True)
    return str(path)


def delete_app_directory(app_id: str, root: Optional[str] = None) -> None:
    path = _app_path(app_id, root)
    if path.exists():
        shutil.rmtree(path)
        log.info("app directory removed: %s", path)
