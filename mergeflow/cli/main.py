"""
MergeFlow - multi-model orchestration CLI
Main CLI entry point
"""

import asyncio
import json
import sys
from typing import Optional, Tuple

import click
import yaml
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from mergeflow import __version__
from mergeflow.api.client import APIClient
from mergeflow.utils.logger import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)


@click.group()
@click.option("--api-url", default="http://localhost:8000", help="API server URL")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx: click.Context, api_url: str, verbose: bool):
    """MergeFlow - ask several models at once and get one merged answer"""
    if verbose:
        setup_logging(level="DEBUG", fmt="text")
    ctx.obj = {"api_url": api_url, "verbose": verbose}


def _fail(ctx: click.Context, error: Exception) -> None:
    console.print(f"❌ Error: {error}", style="red")
    if ctx.obj.get("verbose"):
        import traceback
        console.print(traceback.format_exc())
    sys.exit(1)


def render(response: dict, output_format: str) -> str:
    if output_format == "json":
        return json.dumps(response, indent=2)
    if output_format == "yaml":
        return yaml.dump(response, default_flow_style=False)
    return str(response.get("result", {}).get("content", response))


@cli.command()
@click.argument("query", required=True)
@click.option("--model", "-m", "models", multiple=True, help="Model id or key (repeatable)")
@click.option("--priority", default=0, type=click.IntRange(0, 10), help="Queue priority")
@click.option("--skip-cache", is_flag=True, help="Ignore cached dispatch results")
@click.option("--no-knowledge", is_flag=True, help="Skip external knowledge enhancement")
@click.option("--format", "output_format", default="text", type=click.Choice(["json", "text", "yaml"]))
@click.option("--output", "-o", help="Output file path")
@click.option("--rating", type=click.IntRange(1, 5), help="Rate the answer right away")
@click.pass_context
def ask(
    ctx: click.Context,
    query: str,
    models: Tuple[str, ...],
    priority: int,
    skip_cache: bool,
    no_knowledge: bool,
    output_format: str,
    output: Optional[str],
    rating: Optional[int],
):
    """
    Send QUERY to the selected models and print the merged answer

    Examples:
        mergeflow ask "What is quantum computing?"
        mergeflow ask "Explain AI" -m gpt-4o-mini -m claude-3-haiku --format json
    """
    try:
        result = asyncio.run(
            process_query(
                ctx.obj["api_url"],
                query,
                list(models),
                {
                    "priority": priority,
                    "skip_cache": skip_cache,
                    "enhance_with_knowledge": not no_knowledge,
                },
                rating,
            )
        )
    except Exception as e:
        _fail(ctx, e)
        return

    text = render(result, output_format)
    if output:
        with open(output, "w") as f:
            f.write(text)
        console.print(f"✅ Results saved to {output}")
    else:
        console.print(text)


async def process_query(
    api_url: str, query: str, models: list, options: dict, rating: Optional[int]
) -> dict:
    """Submit the query and wait for its merged result"""
    async with APIClient(base_url=api_url) as client:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Submitting query...", total=None)
            try:
                submitted = await client.submit_query(query, models or None, **options)
                query_id = submitted["query_id"]
                progress.update(task, description=f"Processing query {query_id}...")

                response = await client.wait_for_result(query_id)
                progress.update(task, description="✅ Query completed!")
            except Exception:
                progress.update(task, description="❌ Query failed!")
                raise

        if rating is not None:
            await client.submit_feedback(query_id, rating)
            logger.info(f"Feedback submitted for {query_id}")

    return response


@cli.command()
@click.argument("message", required=True)
@click.option("--model", "-m", "models", multiple=True, help="Model id (repeat to collaborate)")
@click.option("--collaborate", is_flag=True, help="Let several models work on the task")
@click.pass_context
def agent(ctx: click.Context, message: str, models: Tuple[str, ...], collaborate: bool):
    """Run an agent task and stream its step log"""
    options = {"collaboration": collaborate}
    if len(models) > 1:
        options["selected_models"] = list(models)
    model = models[0] if len(models) == 1 else None

    try:
        task = asyncio.run(run_agent(ctx.obj["api_url"], message, model, options))
    except Exception as e:
        _fail(ctx, e)
        return

    console.print()
    console.print((task.get("result") or {}).get("content", ""))


async def run_agent(api_url: str, message: str, model: Optional[str], options: dict) -> dict:
    async with APIClient(base_url=api_url) as client:
        started = await client.start_agent(message, model, options)
        shown = 0
        while True:
            task = await client.get_agent_task(started["task_id"])
            for line in task["logs"][shown:]:
                console.print(line, style="dim")
            shown = len(task["logs"])
            if task["status"] != "processing":
                return task
            await asyncio.sleep(0.5)


@cli.command()
@click.pass_context
def models(ctx: click.Context):
    """List registered models and their performance"""

    async def fetch():
        async with APIClient(base_url=ctx.obj["api_url"]) as client:
            return await client.list_models()

    try:
        response = asyncio.run(fetch())
    except Exception as e:
        _fail(ctx, e)
        return

    table = Table(title=f"Models ({response['total']})")
    for column in ("Model", "Provider", "Quality", "Success", "Latency (ms)"):
        table.add_column(column)
    for model in response["models"]:
        table.add_row(
            model["model_id"],
            model["provider_name"],
            f"{model['quality_score']:.2f}",
            f"{model['success_rate']:.2f}",
            f"{model['avg_response_time_ms']:.0f}",
        )
    console.print(table)


@cli.command("add-key")
@click.argument("api_key", required=True)
@click.option("--provider", help="Provider family; detected from the key when omitted")
@click.pass_context
def add_key(ctx: click.Context, api_key: str, provider: Optional[str]):
    """Validate an API key and register its models"""

    async def submit():
        async with APIClient(base_url=ctx.obj["api_url"]) as client:
            return await client.add_credential(api_key, provider)

    try:
        summary = asyncio.run(submit())
    except Exception as e:
        _fail(ctx, e)
        return
    console.print(
        f"✅ {summary['provider_name']}: {summary['models_discovered']} models registered"
    )


@cli.command()
@click.pass_context
def health(ctx: click.Context):
    """Check API health"""

    async def check():
        async with APIClient(base_url=ctx.obj["api_url"]) as client:
            return await client.health_check()

    try:
        status = asyncio.run(check())
    except Exception as e:
        _fail(ctx, e)
        return
    style = "green" if status["status"] == "healthy" else "yellow"
    console.print(f"API {status['status']} (v{status['version']})", style=style)
    for name, value in status["services"].items():
        console.print(f"  {name}: {value}")


@cli.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", default=None, type=int, help="Port")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server"""
    from mergeflow.api.main import run

    run(host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
