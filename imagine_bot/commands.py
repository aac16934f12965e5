"""Command matching and prompt construction."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .config import CommandCatalog
from .models import Command, CommandKind, CommandMatch


class CommandRegistry:
    """Resolves chat text to a known command.

    Only the first whitespace-delimited token is considered and the match is
    case-insensitive, so ``.Anime please`` runs ``.anime`` while ``.animex``
    runs nothing. Everything after the token is the command argument.
    """

    def __init__(self, commands: Iterable[Command], edit_prefix: str = "") -> None:
        self._commands: Dict[str, Command] = {}
        for command in commands:
            self._commands[command.name.lower()] = command
        self.edit_prefix = edit_prefix

    @classmethod
    def from_catalog(cls, catalog: CommandCatalog) -> "CommandRegistry":
        return cls(catalog.commands, edit_prefix=catalog.edit_prefix)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._commands

    def __len__(self) -> int:
        return len(self._commands)

    def get(self, name: str) -> Optional[Command]:
        return self._commands.get(name.lower())

    def commands(self, kind: Optional[CommandKind] = None) -> List[Command]:
        return [c for c in self._commands.values() if kind is None or c.kind == kind]

    def match(self, text: str) -> Optional[CommandMatch]:
        stripped = (text or "").strip()
        if not stripped.startswith("."):
            return None
        parts = stripped.split(None, 1)
        head = parts[0]
        rest = parts[1] if len(parts) > 1 else ""
        command = self._commands.get(head.lower())
        if command is None:
            return None
        argument = rest.strip() if command.takes_argument else ""
        return CommandMatch(command=command, argument=argument)

    def build_prompt(self, match: CommandMatch) -> str:
        """Return the instruction sent to the generative model."""

        command = match.command
        if command.kind == CommandKind.TEXT_TO_IMAGE:
            return match.argument
        if command.kind == CommandKind.IMAGE_EDIT:
            body = match.argument if command.takes_argument else command.template
            return f"{self.edit_prefix}{body}"
        raise ValueError(f"{command.name} does not produce a prompt")

    def menu_lines(self, bot_name: str = "") -> List[str]:
        title = f"*{bot_name} commands*" if bot_name else "*Commands*"
        lines = [title, ""]
        for command in self.commands(CommandKind.TEXT_TO_IMAGE):
            lines.append(f"{command.name} <prompt> - {command.description}")
        lines.append("")
        lines.append("Reply to an image or upload one with:")
        for command in self.commands(CommandKind.IMAGE_EDIT):
            usage = f"{command.name} <instruction>" if command.takes_argument else command.name
            lines.append(f"{usage} - {command.description}")
        return lines


__all__ = ["CommandRegistry"]
