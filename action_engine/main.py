"""Command-line runner for action descriptions."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import structlog
import yaml
from pydantic import ValidationError

from . import __version__
from .actions import ActionExecutor, ActionRegistry, ActionResult, CancellationToken, ExecutionContext
from .actions.builtin import register_builtin_actions
from .config import ActionDescription, EngineSettings
from .utils import setup_logging


logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2

# Context file keys, camelCase as in the wire format
_CONTEXT_FIELDS = {
    "pageState": "page_state",
    "formData": "form_data",
    "widgetStates": "widget_states",
    "user": "user",
    "permissions": "permissions",
    "tenant": "tenant",
    "routeParams": "route_params",
    "queryParams": "query_params",
    "currentPath": "current_path",
}


class InputError(Exception):
    """Action or context file could not be loaded."""


def load_document(path: Union[str, Path]) -> Any:
    """Load a JSON or YAML document."""
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise InputError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise InputError(f"Cannot parse {path}: {e}") from e


def load_actions(document: Any) -> List[ActionDescription]:
    """Validate a single action description or a list of them."""
    items = document if isinstance(document, list) else [document]
    if not items or not all(isinstance(item, Mapping) for item in items):
        raise InputError("Action file must contain an action object or a list of them")
    try:
        return [ActionDescription.parse(item) for item in items]
    except ValidationError as e:
        raise InputError(f"Invalid action description: {e}") from e


def build_context(document: Optional[Mapping[str, Any]], auto_confirm: bool = True) -> ExecutionContext:
    """Build a context whose UI capabilities log instead of rendering.

    Args:
        document: Context values keyed by wire (camelCase) or Python names
        auto_confirm: Answer given to confirm dialogs
    """
    values: Dict[str, Any] = {}
    for key, value in (document or {}).items():
        name = _CONTEXT_FIELDS.get(key, key)
        if name in _CONTEXT_FIELDS.values():
            values[name] = value
        else:
            values.setdefault("extra", {})[key] = value

    ui_logger = structlog.get_logger("action_engine.ui")

    def navigate(to: str, **options: Any) -> None:
        ui_logger.info("navigate", to=to, **options)

    def go_back(fallback: Optional[str] = None) -> bool:
        ui_logger.info("go_back", fallback=fallback)
        return True

    def reload(hard: bool = False) -> None:
        ui_logger.info("reload", hard=hard)

    def show_toast(message: str, variant: str, duration: int) -> None:
        ui_logger.info("toast", message=message, variant=variant, duration=duration)

    def show_dialog(title: str, message: str, variant: str, confirm_label: str, cancel_label: str) -> bool:
        ui_logger.info("dialog", title=title, message=message, variant=variant, confirmed=auto_confirm)
        return auto_confirm

    return ExecutionContext(
        navigate=navigate,
        go_back=go_back,
        reload=reload,
        show_toast=show_toast,
        show_dialog=show_dialog,
        **values,
    )


async def run_actions(
    actions: List[ActionDescription],
    context: ExecutionContext,
    settings: EngineSettings,
    timeout_ms: Optional[int] = None,
) -> List[ActionResult]:
    """Run ``actions`` as a sequence against a fresh executor."""
    executor = ActionExecutor(registry=ActionRegistry(), settings=settings)
    register_builtin_actions(executor, settings)

    signal = CancellationToken()
    timer = signal.cancel_after(timeout_ms / 1000.0) if timeout_ms else None
    try:
        return await executor.execute_sequence(actions, context, signal)
    finally:
        if timer is not None:
            timer.cancel()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="action-engine",
        description="Execute declarative UI action descriptions",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run an action file (JSON or YAML)")
    run.add_argument("action_file", help="Action description, or a list run as a sequence")
    run.add_argument("--context", dest="context_file", help="Context file (JSON or YAML)")
    run.add_argument("--timeout", type=int, help="Overall timeout in milliseconds")
    run.add_argument(
        "--decline-dialogs",
        action="store_true",
        help="Answer confirm dialogs with cancel instead of confirm",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command-line runner."""
    args = create_parser().parse_args(argv)

    settings = EngineSettings()
    setup_logging(settings.log_level, settings.log_format)

    try:
        actions = load_actions(load_document(args.action_file))
        context_document = load_document(args.context_file) if args.context_file else None
        if context_document is not None and not isinstance(context_document, Mapping):
            raise InputError("Context file must contain an object")
        if args.timeout is not None and args.timeout <= 0:
            raise InputError("Timeout must be a positive number of milliseconds")
    except InputError as e:
        logger.error("Invalid input", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT

    context = build_context(context_document, auto_confirm=not args.decline_dialogs)

    logger.info("Running actions", count=len(actions), file=args.action_file)

    results = asyncio.run(run_actions(actions, context, settings, args.timeout))

    output: Any = [r.to_dict() for r in results]
    if len(actions) == 1 and results:
        output = output[0]
    print(json.dumps(output, indent=2, default=str))

    if len(results) == len(actions) and all(r.success for r in results):
        return EXIT_OK
    return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
