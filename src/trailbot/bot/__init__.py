"""
Discord adapters for the scheduling core.

- **discord_notifier.py**: ``DiscordNotifier`` and ``DiscordModerator``, the
  py-cord backed collaborators the action handlers deliver through.
"""
