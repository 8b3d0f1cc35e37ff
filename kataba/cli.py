import asyncio
from datetime import datetime, timezone

import typer
from rich.console import Console
from rich.table import Table

console = Console()
cli_app = typer.Typer(name="kataba-admin", help="Kataba administrative CLI")


def _run_async(coro):
    """Run async code from sync CLI context."""
    return asyncio.run(coro)


async def _ensure_db():
    from kataba.core.database import init_db
    await init_db()


@cli_app.command("init-db")
def init_db_command():
    """Create any missing database tables."""
    _run_async(_ensure_db())
    console.print("[bold green]Database is ready.[/bold green]")


@cli_app.command("issue-token")
def issue_token(
    user_id: str = typer.Option(..., "--user-id", help="Subject claim for the token"),
    email: str = typer.Option("", "--email", help="Email claim"),
    name: str = typer.Option("", "--name", help="Display name claim"),
):
    """Issue a development identity token signed with the configured secret."""
    from kataba.services.identity import IdentityTokenService

    token = IdentityTokenService().create_token(user_id=user_id, email=email, name=name)

    console.print(f"\n[bold green]Token issued for {user_id}[/bold green]\n")
    console.print(f"  [bold yellow]{token}[/bold yellow]\n")
    console.print("  [dim]Send it as 'Authorization: Bearer <token>'.[/dim]\n")


@cli_app.command("list-conversations")
def list_conversations(
    user_id: str = typer.Option(..., "--user-id", help="Owner whose conversations to list"),
    limit: int = typer.Option(50, "--limit", min=1, max=200),
):
    """List a user's conversations, most recently updated first."""
    async def _list():
        await _ensure_db()
        from kataba.services.conversations import SQLConversationStore
        return await SQLConversationStore().list_conversations(user_id, limit=limit)

    conversations = _run_async(_list())

    if not conversations:
        console.print(f"[dim]No conversations found for '{user_id}'.[/dim]")
        return

    table = Table(title=f"Conversations for {user_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Private", style="green")
    table.add_column("Updated")

    for conv in conversations:
        updated = datetime.fromtimestamp(conv.updated_at / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
        table.add_row(conv.id, conv.title, str(conv.message_count), "yes" if conv.privacy_mode else "no", updated)

    console.print(table)


def main():
    cli_app()


if __name__ == "__main__":
    main()
