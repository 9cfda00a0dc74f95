"""liteagent - tool-using chat agent. Entry point."""

import asyncio
import os
import sys

import click

from liteagent.client import GeminiClient
from liteagent.config import TRACES_DIR, AppConfig
from liteagent.logging_config import setup_logging
from liteagent.orchestrator import Conversation
from liteagent.tools import ToolDirectory
from liteagent.tools.local import LocalToolProvider
from liteagent.tools.mcp import MCPToolProvider, load_mcp_config


def build_conversation(config: AppConfig) -> Conversation:
    """Wire the remote client, tool providers and conversation together."""
    directory = ToolDirectory([LocalToolProvider(config.working_dir)])
    for server in load_mcp_config(config.working_dir).values():
        directory.add_provider(MCPToolProvider(server))

    return Conversation(
        config,
        GeminiClient(config),
        directory,
        traces_dir=TRACES_DIR if config.trace else None,
    )


async def _run(config: AppConfig, prompt: str | None):
    from liteagent.repl import REPL

    repl = REPL(config, build_conversation(config))
    await repl.run(initial_prompt=prompt)


@click.command()
@click.option("-m", "--model", default=None, help="Model identifier (default from config.toml)")
@click.option("-d", "--dir", "working_dir", default=None, help="Working directory")
@click.option("-y", "--yes", "auto_approve", is_flag=True, default=None,
              help="Approve every tool call without asking")
@click.option("-v", "--verbose", is_flag=True, default=None, help="Show thoughts, status and warnings")
@click.argument("prompt", required=False, default=None)
def main(model: str | None, working_dir: str | None, auto_approve: bool | None,
         verbose: bool | None, prompt: str | None):
    """liteagent - chat with a model that can call tools, with your approval."""
    if working_dir:
        wd = os.path.abspath(working_dir)
        if not os.path.isdir(wd):
            click.echo(f"Error: Directory not found: {wd}", err=True)
            sys.exit(1)
    else:
        wd = os.getcwd()

    config = AppConfig.from_file_and_cli({
        "model": model,
        "working_dir": wd,
        "auto_approve": auto_approve or None,
        "verbose": verbose or None,
    })
    setup_logging(verbose=config.verbose)

    try:
        asyncio.run(_run(config, prompt))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
