from .command_list import CommandListItem, CommandListPanel
from .process_panel import ProcessListPanel, ProcessPanelItem

__all__ = [
    "CommandListItem",
    "CommandListPanel",
    "ProcessListPanel",
    "ProcessPanelItem",
]
