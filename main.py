"""
Conversation Intel - Main Entry Point

CLI for analyzing client conversations, checking routing decisions and
running the deterministic contact engines.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from convintel.analysis.conversation_analyzer import ConversationAnalyzer, quick_analyze
from convintel.analysis.models import (
    AnalysisContext,
    ContactRecord,
    MotivationLevel,
    PipelineStage,
    Timeframe,
)
from convintel.analysis.stage_detector import validate_stage_transition
from convintel.config.loader import load_settings
from convintel.config.schema import IntelSettings, InferenceProvider
from convintel.engines.action_recommendation import get_urgency_level, recommend_next_action
from convintel.engines.priority_calculator import calculate_priority_score, get_priority_level
from convintel.engines.seven_day_monitor import (
    get_days_until_seven_day_rule,
    get_seven_day_alert_level,
    get_seven_day_rule_action,
)
from convintel.exceptions import ConfigurationError
from convintel.llm.client import InferenceClient, build_inference_client
from convintel.llm.llm_config import TIER_PROFILES, TaskType, profile_for_tier
from convintel.llm.router import default_usage_tracker, route_task
from convintel.observability.logging_config import configure_logging

root_env = Path(__file__).parent / ".env"
if root_env.exists():
    load_dotenv(root_env, override=True)
else:
    load_dotenv()

app = typer.Typer(
    name="convintel",
    help="Conversation Intel - cost-tiered conversation analysis",
)
console = Console()
logger = logging.getLogger("convintel")


def _get_settings(config: Optional[Path]) -> IntelSettings:
    """Load settings, with a friendly error on failure."""
    try:
        return load_settings(config)
    except ConfigurationError as e:
        console.print(Panel(
            f"[red]{e}[/]",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)


def _check_env_key(var_name: str, label: str) -> str:
    """Check that an environment variable is set. Shows a friendly error if missing."""
    value = os.environ.get(var_name, "").strip()
    if not value:
        console.print(Panel(
            f"[red]Missing required API key:[/] [bold]{var_name}[/]\n\n"
            f"This key is needed for: [cyan]{label}[/]\n\n"
            f"Set it in your .env file:\n"
            f"  [dim]{var_name}=your_key_here[/]",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)
    return value


def _init_client(settings: IntelSettings) -> InferenceClient:
    """Build the provider adapter named in settings."""
    sdk_client = None
    if settings.provider is InferenceProvider.OPENAI:
        from openai import AsyncOpenAI

        sdk_client = AsyncOpenAI(api_key=_check_env_key("OPENAI_API_KEY", "OpenAI inference"))
    elif settings.provider is InferenceProvider.ANTHROPIC:
        from anthropic import AsyncAnthropic

        sdk_client = AsyncAnthropic(
            api_key=_check_env_key("ANTHROPIC_API_KEY", "Anthropic inference")
        )
    return build_inference_client(settings, sdk_client)


def _read_text(text: Optional[str], file: Optional[Path]) -> str:
    if file is not None:
        return file.read_text()
    if text:
        return text
    console.print("[red]Provide conversation text or --file[/]")
    raise typer.Exit(code=1)


# =========================================================================
# Commands
# =========================================================================


@app.command()
def info(
    config: Optional[Path] = typer.Option(None, help="Path to convintel.yaml"),
):
    """Show active settings and tier pricing."""
    settings = _get_settings(config)

    console.print(Panel(
        f"Environment: {settings.environment}\n"
        f"Provider: [cyan]{settings.provider.value}[/]\n"
        f"Mini model: {settings.models.mini}\n"
        f"Full model: {settings.models.full}\n"
        f"Timeout: {settings.inference_timeout_seconds}s\n"
        f"Batch chunk size: {settings.batch_chunk_size}",
        title="Conversation Intel Settings",
    ))

    table = Table(title="Cost Tiers (USD per 1M tokens)")
    table.add_column("Tier", style="cyan")
    table.add_column("Default Model", style="white")
    table.add_column("Input", style="yellow", justify="right")
    table.add_column("Output", style="yellow", justify="right")
    table.add_column("Assumed Output Tokens", justify="right")

    for profile in TIER_PROFILES.values():
        table.add_row(
            profile.tier.value,
            profile.model,
            f"${profile.cost_per_1m_input:.2f}",
            f"${profile.cost_per_1m_output:.2f}",
            str(profile.assumed_output_tokens),
        )

    console.print(table)


@app.command()
def route(
    text: str = typer.Argument(..., help="Conversation text"),
    config: Optional[Path] = typer.Option(None, help="Path to convintel.yaml"),
):
    """Show which tier each analysis task would be routed to."""
    settings = _get_settings(config)
    table = Table(title="Routing Decisions")
    table.add_column("Task", style="cyan")
    table.add_column("Tier", style="green")
    table.add_column("Model")
    table.add_column("Est. Cost", justify="right", style="yellow")
    table.add_column("Reason", style="dim")

    for task in TaskType:
        decision = route_task(task, text)
        model = profile_for_tier(decision.tier, settings.models.for_tier(decision.tier)).model
        table.add_row(
            task.value,
            decision.tier.value,
            model,
            f"${decision.estimated_cost:.6f}",
            decision.reason,
        )

    console.print(table)


@app.command()
def quick(
    text: str = typer.Argument(..., help="Conversation text"),
):
    """Pattern-only triage. No model calls."""
    result = quick_analyze(text)
    style = "red" if result.priority >= 60 else "yellow" if result.priority >= 30 else "white"
    console.print(Panel(
        f"Priority: [{style}]{result.priority}[/{style}]\n"
        f"Urgency: {result.urgency}\n"
        f"Buying intent: {result.buying_intent}\n"
        f"Selling intent: {result.selling_intent}",
        title="Quick Analysis",
    ))


@app.command(name="validate-transition")
def validate_transition(
    from_stage: str = typer.Argument(..., help="Current stage, e.g. 'Lead'"),
    to_stage: str = typer.Argument(..., help="Proposed stage"),
):
    """Check a stage move against the pipeline graph."""
    result = validate_stage_transition(from_stage, to_stage)
    if result.valid:
        note = f" ({result.reason})" if result.reason else ""
        console.print(f"[green]Valid[/]: {from_stage} → {to_stage}{note}")
    else:
        console.print(f"[red]Rejected[/]: {result.reason}")
        raise typer.Exit(1)


@app.command()
def analyze(
    text: Optional[str] = typer.Argument(None, help="Conversation text"),
    file: Optional[Path] = typer.Option(None, help="Read conversation from a file"),
    name: str = typer.Option("Client", help="Contact name"),
    stage: PipelineStage = typer.Option(PipelineStage.LEAD, help="Current pipeline stage"),
    days: int = typer.Option(0, min=0, help="Days since last contact"),
    motivation: Optional[MotivationLevel] = typer.Option(None, help="Known motivation"),
    timeframe: Optional[Timeframe] = typer.Option(None, help="Known timeframe"),
    reply: bool = typer.Option(True, help="Draft a reply"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
    config: Optional[Path] = typer.Option(None, help="Path to convintel.yaml"),
):
    """Run the full cost-tiered analysis on a conversation."""
    settings = _get_settings(config)
    configure_logging(settings.environment)
    conversation = _read_text(text, file)

    context = AnalysisContext(
        contact_name=name,
        current_stage=stage,
        days_since_contact=days,
        motivation_level=motivation,
        timeframe=timeframe,
        generate_reply=reply,
    )
    analyzer = ConversationAnalyzer(
        _init_client(settings), usage_tracker=default_usage_tracker, settings=settings
    )

    result = asyncio.run(analyzer.analyze(conversation, context))

    if as_json:
        console.print_json(result.model_dump_json())
        return

    signals = ", ".join(result.patterns.matched_patterns) or "none"
    console.print(Panel(
        f"Signals: [cyan]{signals}[/] (confidence {result.patterns.confidence})\n"
        f"Motivation: {_enum_value(result.entities.motivation.level)}\n"
        f"Timeframe: {_enum_value(result.entities.timeframe.range)}\n"
        f"Stage: [bold]{result.stage.current_stage.value}[/] "
        f"({result.stage.confidence}%, transition {result.stage.transition_level.value})",
        title="Analysis",
    ))

    action = result.next_action
    console.print(Panel(
        f"[bold]{action.action_type.value}[/] · urgency {action.urgency}/10 "
        f"({get_urgency_level(action.urgency).value})\n\n"
        f"{action.script}\n\n[dim]{action.rationale}[/]",
        title="Next Action",
        border_style="blue",
    ))

    if reply and result.reply_draft.full_reply:
        console.print(Panel(result.reply_draft.full_reply, title="Reply Draft"))

    usage = result.metadata.model_usage
    tiers = [t for t, used in (("rule-based", usage.rule_based), ("mini", usage.mini),
                               ("full", usage.full)) if used]
    console.print(
        f"[dim]Tiers: {', '.join(tiers) or 'none'} · "
        f"est. cost ${result.metadata.total_estimated_cost:.6f} · "
        f"{result.metadata.processing_time_ms:.0f} ms · "
        f"confidence {result.metadata.confidence}[/]"
    )


def _enum_value(value) -> str:
    return value.value if value is not None else "unknown"


@app.command()
def recommend(
    name: str = typer.Argument(..., help="Contact name"),
    contact_id: str = typer.Option("cli-contact", "--id", help="Contact id"),
    stage: PipelineStage = typer.Option(PipelineStage.LEAD, help="Pipeline stage"),
    days: int = typer.Option(0, min=0, help="Days since last contact"),
    motivation: Optional[MotivationLevel] = typer.Option(None, help="Motivation level"),
    timeframe: Optional[Timeframe] = typer.Option(None, help="Timeframe"),
    preapproved: bool = typer.Option(False, help="Pre-approval on file"),
    last_interaction: Optional[str] = typer.Option(
        None, help="ISO date of the last interaction"
    ),
):
    """Deterministic next action, priority and 7-day status for a contact."""
    contact = ContactRecord(
        id=contact_id,
        name=name,
        pipeline_stage=stage,
        days_since_contact=days,
        motivation_level=motivation,
        timeframe=timeframe,
        preapproval_status=preapproved,
        last_interaction_date=last_interaction,
    )
    action = recommend_next_action(contact)
    score = calculate_priority_score(contact)
    alert = get_seven_day_alert_level(contact)
    days_left = get_days_until_seven_day_rule(contact)

    table = Table(title=f"Recommendation: {name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Action", action.action_type.value)
    table.add_row("Urgency", f"{action.urgency} ({get_urgency_level(action.urgency).value})")
    table.add_row("Priority", f"{score} ({get_priority_level(score).value})")
    table.add_row("7-day alert", alert.value)
    table.add_row("Days until 7-day rule", "n/a" if days_left is None else str(days_left))
    table.add_row("Rationale", action.rationale)
    table.add_row("Factors", ", ".join(action.behavioral_factors))
    console.print(table)

    console.print(Panel(action.script, title="Script", border_style="blue"))

    warning = get_seven_day_rule_action(contact)
    if warning:
        console.print(f"[red]{warning}[/]")


if __name__ == "__main__":
    app()
