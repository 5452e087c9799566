#!/usr/bin/env python3
"""Interactive chat CLI for the campaign assistant API."""

import json
import sys
from collections.abc import Iterator

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table


def iter_sse(response: httpx.Response) -> Iterator[tuple[str, str]]:
    """Yield (event, data) pairs from a Server-Sent Events response."""
    event, data_lines = "message", []
    for line in response.iter_lines():
        if not line:
            if data_lines:
                yield event, "\n".join(data_lines)
            event, data_lines = "message", []
        elif line.startswith("event:"):
            event = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:") :].strip())
    if data_lines:
        yield event, "\n".join(data_lines)


class ChatCLI:
    """Interactive chat interface for one campaign."""

    def __init__(self, base_url: str, campaign_id: str):
        """Initialize chat CLI."""
        self.base_url = base_url.rstrip("/")
        self.campaign_id = campaign_id
        self.session_id: str | None = None
        self.console = Console()
        self.client = httpx.Client(base_url=self.base_url, timeout=httpx.Timeout(30.0, read=300.0))

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]Lorekeeper - Campaign Assistant[/bold blue]\n"
                f"Campaign: {self.campaign_id}\n"
                "Commands: /help, /new, /proposals, /accept <id>, /reject <id>, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]Cannot connect to the service at {self.base_url}.[/red]")
            return
        self.console.print("[green]Connected to the campaign assistant[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]").strip()
                command, _, argument = user_input.partition(" ")

                if command.lower() in ["/quit", "/exit"]:
                    break
                elif command == "/help":
                    self._show_help()
                elif command == "/new":
                    self.session_id = None
                    self.console.print("[yellow]Started a new conversation[/yellow]")
                elif command == "/proposals":
                    self._show_proposals()
                elif command in ["/accept", "/reject"]:
                    self._resolve_proposal(command[1:], argument.strip())
                elif user_input:
                    self._send_message(user_input)
        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        try:
            return self.client.get("/health").status_code == 200
        except httpx.HTTPError:
            return False

    def _ensure_session(self) -> str:
        if self.session_id is None:
            response = self.client.post("/sessions", json={"campaign_id": self.campaign_id})
            response.raise_for_status()
            self.session_id = response.json()["session_id"]
        return self.session_id

    def _send_message(self, message: str) -> None:
        """Stream the assistant's answer, showing tool progress as it happens."""
        try:
            session_id = self._ensure_session()
        except httpx.HTTPError as e:
            self.console.print(f"[red]Could not start a session: {e}[/red]")
            return

        self.console.print("[bold green]Assistant[/bold green]")
        try:
            with self.client.stream("POST", f"/sessions/{session_id}/messages/stream", json={"message": message}) as r:
                if r.status_code != 200:
                    r.read()
                    self.console.print(f"[red]API Error: {r.status_code} - {r.text}[/red]")
                    return
                for event, data in iter_sse(r):
                    self._handle_event(event, json.loads(data))
        except KeyboardInterrupt:
            self.client.post(f"/sessions/{session_id}/cancel")
            self.console.print("\n[yellow]Cancelled[/yellow]")
        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")

    def _handle_event(self, event: str, payload: dict) -> None:
        if event == "delta":
            self.console.print(payload["text"], end="", markup=False, highlight=False)
        elif event == "tool_start" and payload.get("visibility") != "silent":
            self.console.print(f"\n[dim]{payload['content']}...[/dim]")
        elif event == "tool_result" and payload.get("is_error") and payload.get("visibility") != "silent":
            self.console.print(f"[dim red]{payload['tool_name']} failed[/dim red]")
        elif event == "result":
            self.console.print()
            self._show_result(payload)
        elif event == "error":
            self.console.print(f"\n[red]Error: {payload.get('detail')}[/red]")

    def _show_result(self, result: dict) -> None:
        if result.get("cancelled"):
            self.console.print("[yellow]Run cancelled[/yellow]")
        elif result.get("error"):
            self.console.print(f"[red]{result['error']}[/red]")

        for proposal in result.get("proposals", []):
            self.console.print(
                f"[magenta]New proposal {proposal['id']} ({proposal['operation']}). "
                f"Use /accept or /reject to review it.[/magenta]"
            )

        usage = result.get("usage", {})
        self.console.print(
            f"[dim]{result.get('iterations', 0)} iterations, "
            f"{usage.get('input_tokens', 0)} in / {usage.get('output_tokens', 0)} out tokens, "
            f"{usage.get('cost', '$0.00')}[/dim]"
        )

    def _show_proposals(self) -> None:
        if self.session_id is None:
            self.console.print("[yellow]No conversation yet[/yellow]")
            return

        response = self.client.get(f"/sessions/{self.session_id}/proposals")
        proposals = response.json().get("proposals", [])
        if not proposals:
            self.console.print("[dim]No proposals.[/dim]")
            return

        table = Table(title="Proposals")
        table.add_column("ID", style="cyan")
        table.add_column("Operation")
        table.add_column("Summary")
        table.add_column("Status")
        for proposal in proposals:
            if proposal["operation"] == "create":
                summary = f"{proposal['entity_type']}: {proposal['data'].get('name', '')}"
            elif proposal["operation"] == "relationship":
                summary = f"{proposal['source_name']} → {proposal['relationship_type']} → {proposal['target_name']}"
            else:
                summary = f"{proposal['entity_type']} {proposal['entity_id']}"
            table.add_row(proposal["id"], proposal["operation"], summary, proposal["status"])
        self.console.print(table)

    def _resolve_proposal(self, action: str, proposal_id: str) -> None:
        if self.session_id is None or not proposal_id:
            self.console.print(f"[yellow]Usage: /{action} <proposal id>[/yellow]")
            return

        response = self.client.post(f"/sessions/{self.session_id}/proposals/{proposal_id}/{action}")
        if response.status_code != 200:
            self.console.print(f"[red]API Error: {response.status_code} - {response.json().get('detail')}[/red]")
            return

        self.console.print(f"[green]Proposal {proposal_id} {action}ed[/green]")
        skipped = response.json().get("skipped_relationships") or []
        if skipped:
            self.console.print(f"[yellow]Skipped relationships to: {', '.join(skipped)}[/yellow]")

    def _show_help(self) -> None:
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /new - Start a new conversation
• /proposals - List proposals from this conversation
• /accept <id> - Apply a proposal to the campaign
• /reject <id> - Discard a proposal
• /quit or /exit - Exit the chat

Press Ctrl+C while the assistant is answering to cancel the run.

[bold]Example Questions:[/bold]
1. "Who is Captain Aldric and who are his allies?"
2. "Help me prepare for tonight's session"
3. "Create a rival thieves' guild in the capital"
        """
        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]"))


def main():
    """Main entry point for the chat CLI."""
    if len(sys.argv) < 2:
        print("Usage: chat_cli.py <campaign_id> [base_url]")
        sys.exit(1)

    campaign_id = sys.argv[1]
    base_url = sys.argv[2] if len(sys.argv) > 2 else "http://localhost:8000"
    ChatCLI(base_url, campaign_id).start()


if __name__ == "__main__":
    main()
