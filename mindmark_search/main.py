"""Main entry point for the MindMark search MCP server."""
import asyncio
import logging
import sys

from mcp.server.stdio import stdio_server

from mindmark_search.config import Config
from mindmark_search.errors import ConfigurationError, SearchEngineError
from mindmark_search.server import build_context, create_server
from mindmark_search.typesense_client import ensure_collection

logger = logging.getLogger("mindmark_search")


def configure_logging(level: str = "INFO") -> None:
    """Send logs to stderr; stdout carries the MCP stdio transport."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def main(config: Config) -> None:
    ctx = build_context(config)
    await ctx.store.initialize()
    try:
        try:
            await ensure_collection(ctx.client, ctx.collection)
        except SearchEngineError as e:
            # Search degrades to the store until the engine is reachable.
            logger.warning("Could not ensure collection %r: %s", ctx.collection, e)

        server = create_server(ctx)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        ctx.trigger.detach()
        await ctx.trigger.drain()
        await ctx.client.aclose()
        await ctx.store.close()


def run() -> None:
    """Console script entry point."""
    config = Config.from_env()
    configure_logging(config.log_level)
    try:
        config.validate()
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    asyncio.run(main(config))


if __name__ == "__main__":
    run()
