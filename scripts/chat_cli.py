#!/usr/bin/env python3
"""Interactive chat CLI for the Flynn chat service."""

import json
import sys

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt

from seed_demo import DEMO_CAREGIVER_ID


def parse_sse_lines(lines):
    """Group raw SSE lines into (event, data) pairs."""
    event_type = "message"
    data_lines: list[str] = []
    for line in lines:
        if line == "":
            if data_lines:
                yield event_type, json.loads("\n".join(data_lines))
            event_type, data_lines = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event_type = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:") :].lstrip())
    if data_lines:
        yield event_type, json.loads("\n".join(data_lines))


class ChatCLI:
    """Interactive chat interface for the Flynn chat service."""

    def __init__(self, base_url: str = "http://localhost:8000", caregiver_id: str = DEMO_CAREGIVER_ID):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.caregiver_id = caregiver_id
        self.conversation_id: str | None = None
        self.console = Console()
        self.client = httpx.Client(timeout=httpx.Timeout(10.0, read=180.0))

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]Flynn - Interactive Chat[/bold blue]\n"
                "Type your messages to chat with the AI assistant.\n"
                "Commands: /help, /new, /history, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print(f"[green]Connected to Flynn as caregiver {self.caregiver_id}[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/new":
                    self.conversation_id = None
                    self.console.print("[yellow]Starting a new conversation[/yellow]")
                    continue
                elif user_input.lower() == "/history":
                    self._show_history()
                    continue
                elif user_input.strip() == "":
                    continue

                if not self.conversation_id and not self._create_conversation():
                    continue
                self._send_message(user_input)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _create_conversation(self) -> bool:
        response = self.client.post(f"{self.base_url}/conversations", json={"caregiverId": self.caregiver_id})
        if response.status_code != 201:
            self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
            return False
        self.conversation_id = response.json()["data"]["id"]
        self.console.print(f"[dim]Conversation {self.conversation_id}[/dim]")
        return True

    def _send_message(self, message: str) -> None:
        """Send a message and render the streamed reply."""
        url = f"{self.base_url}/conversations/{self.conversation_id}/messages"
        reply_parts: list[str] = []
        try:
            with self.client.stream("POST", url, json={"content": message}) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
                    return

                for event_type, data in parse_sse_lines(response.iter_lines()):
                    if event_type == "text":
                        reply_parts.append(data["content"])
                        self.console.print(data["content"], end="", markup=False, highlight=False)
                    elif event_type == "tool_call":
                        self.console.print(f"\n[magenta]-> {data['name']}({json.dumps(data['input'])})[/magenta]")
                    elif event_type == "tool_result":
                        style = "red" if data["isError"] else "dim"
                        result = data["result"] if isinstance(data["result"], str) else json.dumps(data["result"])
                        self.console.print(f"[{style}]<- {data['name']}: {result[:200]}[/{style}]")
                    elif event_type == "done":
                        usage = data["usage"]
                        self.console.print(
                            f"\n[dim]tokens in={usage['input']} out={usage['output']} "
                            f"stop={data['stopReason']}[/dim]"
                        )
                    elif event_type == "error":
                        retry = " (retryable)" if data["retryable"] else ""
                        self.console.print(f"\n[red]Error {data['code']}{retry}: {data['message']}[/red]")

        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")
            return

        if reply_parts:
            self.console.print(
                Panel(
                    Markdown("".join(reply_parts)),
                    title="[bold green]Flynn[/bold green]",
                    border_style="green",
                    padding=(1, 2),
                )
            )

    def _show_history(self) -> None:
        if not self.conversation_id:
            self.console.print("[yellow]No active conversation[/yellow]")
            return
        response = self.client.get(f"{self.base_url}/conversations/{self.conversation_id}/messages")
        for row in response.json()["data"]:
            label = row["role"] if not row.get("toolName") else f"{row['role']}:{row['toolName']}"
            self.console.print(f"[bold]{label}[/bold] {row['content'][:200]}")

    def _show_help(self) -> None:
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /new - Start a new conversation
• /history - Show the stored messages of the current conversation
• /quit or /exit - Exit the chat

[bold]Example Conversation:[/bold]
1. "Which children can you help me with?"
2. "What goals is Emma working on?"
3. "Add a milestone note: Emma used a two-word phrase today"
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    caregiver_id = sys.argv[2] if len(sys.argv) > 2 else DEMO_CAREGIVER_ID

    chat = ChatCLI(base_url, caregiver_id)
    chat.start()


if __name__ == "__main__":
    main()
