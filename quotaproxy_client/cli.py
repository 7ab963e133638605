"""
Quota Proxy CLI Tool
Command-line interface for the rate-limited completion proxy.
"""

import json
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .client import ProxyClient, RateLimitExceeded
from .models import RateLimitInfo


console = Console()


def get_client(url: str) -> ProxyClient:
    """Create a client instance."""
    return ProxyClient(base_url=url)


def print_rate_limit(rate_limit: RateLimitInfo) -> None:
    color = "red" if rate_limit.exhausted else "yellow" if rate_limit.remaining <= 3 else "green"
    console.print(
        f"[dim]Quota:[/dim] [{color}]{rate_limit.remaining}/{rate_limit.limit} remaining[/{color}]"
        f" [dim](resets {rate_limit.reset.isoformat()})[/dim]"
    )


@click.group()
@click.option("--url", "-u", default="http://localhost:8000", envvar="QUOTA_PROXY_URL",
              help="Proxy server URL")
@click.pass_context
def cli(ctx, url: str):
    """Quota Proxy CLI - rate-limited chat completions."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url


@cli.command()
@click.pass_context
def health(ctx):
    """Check proxy server health."""
    with get_client(ctx.obj["url"]) as client:
        try:
            status = client.health()
            if status.get("status") == "healthy":
                console.print("✅ [green]Proxy is healthy[/green]")
                console.print(f"   Quota store: {status.get('quota_backend', 'unknown')}")
            else:
                console.print("⚠️ [yellow]Proxy status unknown[/yellow]")
        except Exception as e:
            console.print(f"❌ [red]Connection failed: {e}[/red]")
            sys.exit(1)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx, as_json: bool):
    """Show current quota usage (does not consume a request)."""
    with get_client(ctx.obj["url"]) as client:
        try:
            rate_limit = client.get_rate_limit_status()

            if as_json:
                console.print(json.dumps({
                    "limit": rate_limit.limit,
                    "remaining": rate_limit.remaining,
                    "reset": rate_limit.reset.isoformat(),
                    "used": rate_limit.used,
                }, indent=2))
                return

            table = Table(title="Rate Limit Status")
            table.add_column("Metric", style="cyan")
            table.add_column("Value", justify="right")
            table.add_row("Limit", str(rate_limit.limit))
            table.add_row("Used", str(rate_limit.used))
            table.add_row("Remaining", str(rate_limit.remaining))
            table.add_row("Resets", rate_limit.reset.isoformat())
            console.print(table)

        except Exception as e:
            console.print(f"❌ [red]Error: {e}[/red]")
            sys.exit(1)


@cli.command()
@click.argument("message")
@click.option("--model", "-m", default="gpt-3.5-turbo", help="Upstream model")
@click.option("--temperature", "-t", type=float, default=None, help="Sampling temperature")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def chat(ctx, message: str, model: str, temperature, as_json: bool):
    """Send a chat message through the proxy."""
    with get_client(ctx.obj["url"]) as client:
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task("Generating...", total=None)
                completion, rate_limit = client.chat_completions_create(
                    messages=[{"role": "user", "content": message}],
                    model=model,
                    temperature=temperature,
                )

            if as_json:
                console.print(json.dumps({
                    "model": completion.model,
                    "content": completion.content,
                    "usage": completion.usage,
                    "remaining": rate_limit.remaining,
                }, indent=2))
                return

            console.print(Panel(
                completion.content,
                title=f"[cyan]{completion.model}[/cyan]",
                border_style="green",
            ))
            print_rate_limit(rate_limit)

        except RateLimitExceeded as e:
            console.print(f"⛔ [red]{e}[/red]")
            sys.exit(2)
        except Exception as e:
            console.print(f"❌ [red]Error: {e}[/red]")
            sys.exit(1)


def main():
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
