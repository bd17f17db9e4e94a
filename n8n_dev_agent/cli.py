"""Terminal client for the n8n workflow builder.

Input modes, in priority order:
    n8n-agent -i                           interactive REPL
    echo "prompt" | n8n-agent              prompt from stdin
    n8n-agent "Webhook that posts to Slack" prompt as argument
    n8n-agent                              interactive REPL

Workflow JSON goes to stdout (or --output FILE). Progress, warnings and
errors go to stderr so stdout stays pipeable.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from n8n_dev_agent.agent import (
    DEFAULT_WORKFLOW_NAME,
    BuilderSettings,
    BuildResult,
    ProgressEvent,
    ProgressType,
    WorkflowBuilder,
    create_builder,
)
from n8n_dev_agent.client import N8nApiError, N8nClient
from n8n_dev_agent.reasoning import ReasoningSettings, create_engine

logger = logging.getLogger("n8n_dev_agent.cli")

HELP_TEXT = """\
Commands:
  <prompt>          Add to/refine the current workflow
  /new              Start a new workflow (clear context)
  /validate         Validate current workflow against n8n API
  /deploy           Deploy workflow to n8n
  /status           Show current workflow status
  /save [file]      Save last workflow to file (default: workflow.json)
  /model <name>     Change model (haiku/sonnet/opus or a full model ID)
  /verbose          Toggle verbose mode
  /help             Show this help
  /quit             Exit (also /exit, /q)"""


def _err(text: str = "", end: str = "\n") -> None:
    print(text, file=sys.stderr, end=end, flush=True)


# ---------------------------------------------------------------------------
# Progress rendering
# ---------------------------------------------------------------------------


class ProgressPrinter:
    """Renders ProgressEvents on stderr: one dot per turn, or full detail when verbose."""

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose

    def __call__(self, event: ProgressEvent) -> None:
        if self.verbose:
            self._detailed(event)
        else:
            self._compact(event)

    @staticmethod
    def _detailed(event: ProgressEvent) -> None:
        match event.type:
            case ProgressType.TURN_START:
                _err(f"\n--- Turn {event.turn} ---")
            case ProgressType.TOOL_CALL:
                _err(f"  > {event.tool_name}: {event.message}")
            case ProgressType.TOOL_RESULT:
                _err(f"    {event.message}")
            case ProgressType.VALIDATION:
                _err(f"  ⚡ {event.message}")
            case ProgressType.RETRY:
                _err(f"  ↻ {event.message}")
            case ProgressType.ERROR:
                _err(f"\n✗ Error: {event.message}")
            case ProgressType.SUCCESS:
                _err(f"\n✓ Success: {event.message}")

    @staticmethod
    def _compact(event: ProgressEvent) -> None:
        match event.type:
            case ProgressType.TURN_START:
                if event.turn == 1:
                    _err("Building workflow", end="")
                _err(".", end="")
            case ProgressType.ERROR:
                _err(f"\n✗ {event.message}")
            case ProgressType.SUCCESS:
                _err(" Done!")


# ---------------------------------------------------------------------------
# One-shot build
# ---------------------------------------------------------------------------


def _dump(workflow: dict[str, Any]) -> str:
    return json.dumps(workflow, indent=2, ensure_ascii=False)


def report_result(result: BuildResult, output: str | None = None, verbose: bool = False) -> None:
    """Print a BuildResult: JSON to stdout or ``output``, everything else to stderr."""
    if not result.success:
        _err(f"Error: {result.error}")
        if result.requires_human_input:
            _err(f"\nHuman input needed: {result.human_input_reason}")
        if verbose and result.conversation_log:
            _err("\nConversation log:")
            for line in result.conversation_log:
                _err(f"  {line}")
        return

    if result.validation_warnings:
        _err("\nWarnings:")
        for warning in result.validation_warnings:
            _err(f"  - {warning}")

    text = _dump(result.workflow or {})
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        if verbose:
            _err(f"Saved to {output}")
    else:
        print(text)

    if verbose:
        _err("\nWorkflow created successfully!")
        _err(f"Nodes: {len((result.workflow or {}).get('nodes', []))}")
        if result.validation_attempts:
            _err(f"Validation attempts: {result.validation_attempts}")
        _err(f"Tokens: {result.input_tokens} in / {result.output_tokens} out")


async def run_once(builder: WorkflowBuilder, prompt: str, args: Namespace) -> int:
    if args.verbose:
        _err("Building workflow...")
        _err(f'Prompt: "{prompt}"')
        _err(f"Model: {builder.engine.model_id}")
        _err(f"n8n API: {'connected' if builder.client else 'not configured (local validation only)'}")
        _err()

    result = await builder.build(prompt, on_progress=ProgressPrinter(args.verbose), workflow_name=args.name)
    report_result(result, args.output, args.verbose)
    return 0 if result.success else 1


# ---------------------------------------------------------------------------
# Interactive session
# ---------------------------------------------------------------------------


class InteractiveSession:
    """REPL state: the builder, the last result and the session toggles."""

    def __init__(
        self,
        builder: WorkflowBuilder,
        reasoning_settings: ReasoningSettings,
        workflow_name: str = DEFAULT_WORKFLOW_NAME,
        verbose: bool = False,
    ) -> None:
        self.builder = builder
        self.reasoning_settings = reasoning_settings
        self.workflow_name = workflow_name
        self.progress = ProgressPrinter(verbose)
        self.last_result: BuildResult | None = None
        self.last_workflow: dict[str, Any] | None = None

    @property
    def client(self) -> N8nClient | None:
        return self.builder.client

    async def submit(self, prompt: str) -> BuildResult:
        """Build or refine the current workflow from free text."""
        result = await self.builder.build(
            prompt,
            continue_from=self.last_result,
            on_progress=self.progress,
            workflow_name=self.workflow_name,
        )
        self.last_result = result
        if result.success and result.workflow:
            self.last_workflow = result.workflow
        report_result(result, verbose=self.progress.verbose)
        return result

    async def handle_command(self, line: str) -> bool:
        """Run one slash command. Returns False when the session should end."""
        parts = line[1:].split(maxsplit=1)
        command = parts[0].lower() if parts else ""
        arg = parts[1].strip() if len(parts) > 1 else ""

        match command:
            case "new":
                self.builder.reset()
                self.last_result = None
                self.last_workflow = None
                _err("Context cleared. Starting fresh.")
            case "validate":
                await self._validate()
            case "deploy":
                await self._deploy()
            case "status":
                self._status()
            case "save":
                self._save(arg or "workflow.json")
            case "model":
                self._model(arg)
            case "verbose":
                self.progress.verbose = not self.progress.verbose
                _err(f"Verbose mode: {'on' if self.progress.verbose else 'off'}")
            case "help":
                _err(HELP_TEXT)
            case "quit" | "exit" | "q":
                _err("Goodbye!")
                return False
            case _:
                _err(f"Unknown command: {command}")
                _err("Type /help for available commands")
        return True

    async def _validate(self) -> None:
        if not self.last_workflow:
            _err("No workflow to validate. Generate one first.")
            return
        if self.client is None:
            _err("n8n API not configured. Set N8N_API_KEY to enable validation.")
            return

        _err("Validating against n8n API...")
        check = await self.client.validate_by_creation(self.last_workflow)
        if check.valid:
            _err("✓ Workflow is valid!")
            return
        _err(f"✗ Validation failed: {check.error.message if check.error else 'Unknown error'}")
        if check.error and check.error.details:
            _err(f"  Details: {json.dumps(check.error.details, default=str)}")

    async def _deploy(self) -> None:
        if not self.last_workflow:
            _err("No workflow to deploy. Generate one first.")
            return
        if self.client is None:
            _err("n8n API not configured. Set N8N_API_KEY to enable deployment.")
            return

        _err("Deploying to n8n...")
        try:
            created = await self.client.create_workflow(self.last_workflow)
        except N8nApiError as e:
            _err(f"✗ Deploy failed: {e.message}")
            return
        _err(f"✓ Deployed! ID: {created.get('id')}")
        _err(f"  URL: {self.client.settings.workflow_url(str(created.get('id')))}")

    def _status(self) -> None:
        _err("\nCurrent Status:")
        _err(f"  Model: {self.builder.engine.model_id}")
        _err(f"  Verbose: {'on' if self.progress.verbose else 'off'}")
        _err(f"  n8n API: {'connected' if self.client else 'not configured'}")

        if self.last_workflow:
            _err("\nLast Workflow:")
            _err(f"  Name: {self.last_workflow.get('name')}")
            _err(f"  Nodes: {len(self.last_workflow.get('nodes', []))}")
            _err(f"  Connections: {len(self.last_workflow.get('connections', {}))}")
        else:
            _err("\nNo workflow generated yet.")

        if self.builder.state.node_count:
            _err("\nCurrent graph:")
            for line in self.builder.state.summary().splitlines():
                _err(f"  {line}")

        if self.last_result:
            if self.last_result.validation_attempts:
                _err(f"  Validation attempts: {self.last_result.validation_attempts}")
            if self.last_result.requires_human_input:
                _err(f"  Needs input: {self.last_result.human_input_reason}")

    def _save(self, filename: str) -> None:
        if not self.last_workflow:
            _err("No workflow to save. Generate one first.")
            return
        try:
            Path(filename).write_text(_dump(self.last_workflow) + "\n", encoding="utf-8")
        except OSError as e:
            _err(f"Failed to save: {e}")
            return
        _err(f"Saved to {filename}")

    def _model(self, name: str) -> None:
        if not name:
            _err(f"Current model: {self.builder.engine.model_id}")
            return
        try:
            self.builder.engine = create_engine(self.reasoning_settings, model=name)
        except (ValueError, ImportError) as e:
            _err(f"Failed to change model: {e}")
            return
        _err(f"Model changed to: {self.builder.engine.model_id}")


def _prompt(label: str) -> str | None:
    """Read a line from stdin. Returns None on EOF."""
    try:
        return input(label).strip()
    except EOFError:
        return None


async def run_interactive(session: InteractiveSession) -> int:
    _err("n8n Dev Agent - Interactive Mode")
    _err("================================")
    _err(HELP_TEXT)
    _err()
    _err(f"n8n API: {'connected' if session.client else 'not configured (set N8N_API_KEY to enable)'}")
    _err()

    while True:
        line = _prompt("n8n-agent> ")
        if line is None:
            _err()
            return 0
        if not line:
            continue
        if line.startswith("/"):
            if not await session.handle_command(line):
                return 0
            continue
        _err()
        await session.submit(line)
        _err()


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _read_stdin() -> str | None:
    if sys.stdin is None or sys.stdin.isatty():
        return None
    return sys.stdin.read().strip() or None


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="n8n-agent",
        description="Generate n8n workflows from natural language",
    )
    parser.add_argument("prompt", nargs="?", help="Natural-language description of the workflow")
    parser.add_argument("-n", "--name", default=DEFAULT_WORKFLOW_NAME, help="Workflow name")
    parser.add_argument("-o", "--output", metavar="FILE", help="Output file path (default: stdout)")
    parser.add_argument(
        "-m", "--model",
        help="Model: haiku, sonnet, opus, or a full model ID (default: haiku)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed progress")
    parser.add_argument("-i", "--interactive", action="store_true", help="Force interactive mode")
    return parser


async def _run(args: Namespace) -> int:
    reasoning_settings = ReasoningSettings()
    builder, client = create_builder(reasoning_settings=reasoning_settings, model=args.model)
    try:
        prompt = None if args.interactive else (_read_stdin() or args.prompt)
        if prompt:
            return await run_once(builder, prompt, args)
        session = InteractiveSession(builder, reasoning_settings, args.name, args.verbose)
        return await run_interactive(session)
    finally:
        if client is not None:
            await client.close()


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        level = logging.INFO if args.verbose else BuilderSettings().log_level
        logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
        sys.exit(asyncio.run(_run(args)))
    except KeyboardInterrupt:
        _err("\nInterrupted.")
        sys.exit(130)
    except (ValueError, ImportError) as e:
        logger.debug("Startup failed", exc_info=True)
        _err(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
