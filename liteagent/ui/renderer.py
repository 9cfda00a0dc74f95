"""Rich-based terminal rendering of conversation events."""

import json

from rich.console import Console
from rich.panel import Panel
from rich.status import Status
from rich.text import Text

console = Console()


def show_welcome(model: str, working_dir: str):
    """Display welcome banner."""
    console.print()
    console.print(
        Panel(
            f"[bold cyan]liteagent[/bold cyan] - Tool-using chat agent\n"
            f"Model: [green]{model}[/green]  |  Dir: [dim]{working_dir}[/dim]\n"
            f"Type [bold]/help[/bold] for commands, [bold]Ctrl+C[/bold] to stop, [bold]Ctrl+D[/bold] to exit",
            border_style="cyan",
            padding=(1, 2),
        )
    )
    console.print()


def write_text(text: str):
    """Stream a chunk of model text without a trailing newline."""
    console.print(text, end="", markup=False, highlight=False, soft_wrap=True)


def show_thought(text: str):
    console.print(Text(text, style="dim italic"), end="", soft_wrap=True)


def show_activity(label: str):
    console.print(f"[dim cyan]{label}[/dim cyan]")


def show_authorization_request(tool_name: str, tool_args: dict):
    """Display the tool call waiting for a decision."""
    console.print()
    console.print(
        Panel(
            _format_tool_args(tool_name, tool_args),
            title=f"[bold yellow]Tool: {tool_name}[/bold yellow]",
            border_style="yellow",
            padding=(0, 1),
        )
    )


def _format_tool_args(tool_name: str, tool_args: dict) -> str:
    """Format tool arguments for display."""
    if tool_name == "read_file":
        path = tool_args.get("path", "")
        extra = ""
        if "offset" in tool_args:
            extra += f" (from line {tool_args['offset']})"
        if "limit" in tool_args:
            extra += f" (limit {tool_args['limit']} lines)"
        return f"{path}{extra}"
    elif tool_name == "list_dir":
        return tool_args.get("path", ".") or "."
    return json.dumps(tool_args, indent=2)


def start_thinking_spinner() -> Status:
    """Start a thinking spinner. Returns the Status object to stop later."""
    status = Status("[dim]Thinking...[/dim]", spinner="dots", console=console)
    status.start()
    return status


def stop_thinking_spinner(status: Status | None):
    if status is not None:
        status.stop()


def end_response():
    console.print()


def show_error(message: str):
    """Display an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def show_info(message: str):
    """Display an info message."""
    console.print(f"[dim]{message}[/dim]")
