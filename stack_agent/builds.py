import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests
from fastapi.concurrency import run_in_threadpool

from stack_agent import settings
from stack_agent.entities import App
from stack_agent.errors import BuilderUnavailable

log = logging.getLogger(__name__)


class BuildTrigger(ABC):
    """Entry point used whenever a start needs a fresh image."""

    @abstractmethod
    async def request_build(self, app: App, reason: str) -> Dict[str, Any]: ...


class HttpBuildTrigger(BuildTrigger):
    """
    Asks the build service to build the app. The service registers the build
    with ``POST /agent/apps/{appId}/builds``, tags the image with the returned
    ``image`` and starts the app again once the image exists.
    """

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = base_url if base_url is not None else settings.STACK_BUILDER_BASE_URL
        self.token = token if token is not None else settings.STACK_BUILDER_TOKEN
        self.timeout = timeout or settings.STACK_BUILDER_TIMEOUT_SECONDS

    def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        url = self.base_url.rstrip("/") + "/builds"
        headers = {"X-Builder-Token": self.token} if self.token else {}
        try:
            r = requests.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            log.warning("build request failed: app=%s err=%s", body.get("appId"), e)
            raise BuilderUnavailable(f"build service unreachable: {e}") from e
        if r.status_code >= 400:
            log.warning("build request rejected: status=%s body=%s", r.status_code, (r.text or "")[:300])
            raise BuilderUnavailable(f"build service rejected the request (status {r.status_code})")
        try:
            return r.json()
        except ValueError:
            return {"status": r.status_code}

    async def request_build(self, app: App, reason: str) -> Dict[str, Any]:
        if not self.base_url:
            raise BuilderUnavailable("build service not configured (set STACK_BUILDER_BASE_URL)")
        body = {
            "appId": app.id,
            "name": app.name,
            "repository": app.repository,
            "branch": app.branch,
            "reason": reason,
        }
        log.info("requesting build: app=%s reason=%s", app.id, reason)
        return await run_in_threadpool(self._post, body)
