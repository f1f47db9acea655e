"""Run the PhaseKit MCP server on stdio."""

from __future__ import annotations

import os

from phasekit.config import LOG_LEVEL_ENV
from phasekit.phasekit_logging import setup_logging
from phasekit.server import mcp

if __name__ == "__main__":
    setup_logging(os.getenv(LOG_LEVEL_ENV, "WARNING"))
    mcp.run(transport="stdio")
