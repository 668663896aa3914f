"""
ILSpy Browser MCP Server.

Browse .NET assemblies as a lazy tree of namespaces, types and members,
and read decompiled C# or IL for any member. Decompilation is delegated
to an external engine process that is started on demand and restarted
after a crash.
"""

import logging

from fastmcp import FastMCP

from ilspy_browser.engines.dotnet.locator import EngineLocator, load_engine_settings
from ilspy_browser.engines.dotnet.session import DecompilerSession
from ilspy_browser.engines.tree.cache_tree import CacheTree
from ilspy_browser.tools.browser_tools import register_browser_tools
from ilspy_browser.utils.config import get_config

# Configure logging
logging.basicConfig(
    level=getattr(logging, (get_config("ILSPY_BROWSER_LOG_LEVEL", "INFO") or "INFO").upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize components
app = FastMCP("ilspy-browser")
locator = EngineLocator(get_config("ILSPY_ENGINE_PATH"))
settings = load_engine_settings(locator)
session = DecompilerSession(settings, locator)
tree = CacheTree(session, settings.language)


def main():
    """Run the MCP server."""
    logger.info("Starting ILSpy Browser MCP Server...")
    logger.info(f"Engine command: {settings.command}")
    logger.info(f"Decompile language: {settings.language.value}")

    register_browser_tools(app, tree)
    logger.info("Registered assembly browser tools")

    try:
        # Run the FastMCP server (handles stdio automatically)
        app.run()
    finally:
        logger.info("Shutting down decompiler engine")
        tree.stop()


if __name__ == "__main__":
    main()
