"""
Production entry point.

Runs uvicorn with ``log_config=None`` so the handlers installed by
``setup_logging`` are kept instead of uvicorn's defaults.
"""

import uvicorn

from stack_agent import settings
from stack_agent.logging_setup import setup_logging


def main() -> None:
    setup_logging("stack-agent")
    uvicorn.run(
        "stack_agent.main:app",
        host=str(settings.STACK_AGENT_HOST or "0.0.0.0"),
        port=int(settings.STACK_AGENT_PORT or 7010),
        log_config=None,
        access_log=True,
    )


if __name__ == "__main__":
    main()
