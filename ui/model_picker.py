from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from rich.console import Console

MODELS_PER_PAGE = 5
CANCEL_OPTION = 0

_logger = logging.getLogger(__name__)


class PickAction(str, Enum):
    SELECT = "select"
    NEXT = "next"
    PREVIOUS = "previous"
    CANCEL = "cancel"
    INVALID = "invalid"


@dataclass(frozen=True)
class ModelPage:
    index: int
    total_pages: int
    models: list[str]
    show_more_option: Optional[int]
    go_previous_option: Optional[int]


def build_page(models: Sequence[str], page: int, per_page: int = MODELS_PER_PAGE) -> ModelPage:
    """Models are numbered from 1; "show more" and "go previous" take the next free numbers."""
    total_pages = max(1, math.ceil(len(models) / per_page))
    page = min(max(page, 0), total_pages - 1)
    start = page * per_page
    end = min(start + per_page, len(models))
    shown = list(models[start:end])

    next_option = len(shown) + 1
    show_more = None
    if end < len(models):
        show_more = next_option
        next_option += 1
    go_previous = next_option if page > 0 else None
    return ModelPage(page, total_pages, shown, show_more, go_previous)


def resolve_choice(page: ModelPage, raw: str) -> tuple[PickAction, Optional[str]]:
    try:
        choice = int(raw.strip())
    except ValueError:
        return PickAction.INVALID, None
    if choice == CANCEL_OPTION:
        return PickAction.CANCEL, None
    if page.show_more_option is not None and choice == page.show_more_option:
        return PickAction.NEXT, None
    if page.go_previous_option is not None and choice == page.go_previous_option:
        return PickAction.PREVIOUS, None
    if 1 <= choice <= len(page.models):
        return PickAction.SELECT, page.models[choice - 1]
    return PickAction.INVALID, None


def render_page(console: Console, page: ModelPage, current: str) -> None:
    console.print()
    console.print(f"[bold]--- Select AI Model (Page {page.index + 1}/{page.total_pages}) ---[/bold]")
    for number, model in enumerate(page.models, start=1):
        marker = " [bright_green](Current)[/bright_green]" if model == current else ""
        console.print(f"  [bright_blue]{number}[/bright_blue]: [bright_blue]{model}[/bright_blue]{marker}")
    console.print("[bold]" + "-" * 52 + "[/bold]")
    if page.show_more_option is not None:
        console.print(f"  [bright_blue]{page.show_more_option}[/bright_blue]: Show More")
    if page.go_previous_option is not None:
        console.print(f"  [bright_blue]{page.go_previous_option}[/bright_blue]: Go Previous")
    console.print(f"  [bright_blue]{CANCEL_OPTION}[/bright_blue]: Cancel")
    console.print()


async def pick_model(
    console: Console,
    models: Sequence[str],
    current: str,
    ask: Callable[[str], Awaitable[Optional[str]]],
) -> Optional[str]:
    """Interactive paginated picker; returns the chosen model or None when cancelled."""
    page_index = 0
    while True:
        page = build_page(models, page_index)
        render_page(console, page, current)
        raw = await ask("Enter the number of the model or option: ")
        if raw is None:
            return None

        action, model = resolve_choice(page, raw)
        if action is PickAction.CANCEL:
            console.print("Model selection cancelled.")
            return None
        if action is PickAction.NEXT:
            page_index += 1
            _logger.debug("Showing next page of models")
        elif action is PickAction.PREVIOUS:
            page_index -= 1
            _logger.debug("Showing previous page of models")
        elif action is PickAction.SELECT:
            return model
        else:
            logging.error("Invalid choice. Please enter one of the listed numbers.")
