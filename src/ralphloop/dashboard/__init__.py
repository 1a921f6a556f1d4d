"""Dashboard layer: status screen rendering and the Textual monitor.

The Textual app is imported lazily by the CLI (``ralphloop.dashboard.app``)
so the plain loop never pays for it.
"""

from .render import (
    ScreenRenderer,
    hyperlink,
    progress_bar,
    status_label,
    status_line,
    task_list,
    truncate_title,
)

__all__ = [
    "ScreenRenderer",
    "hyperlink",
    "progress_bar",
    "status_label",
    "status_line",
    "task_list",
    "truncate_title",
]
