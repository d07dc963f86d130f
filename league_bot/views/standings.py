"""
Paginated league table view.
"""

import math

import discord
from discord.ui import View, Button

from league_bot.constants import UIConstants
from league_bot.utils.messages import build_standings_table


class StandingsTableView(View):
    """Page through the fixed-width standings table, or jump to the caller's row."""

    def __init__(
        self,
        standings,
        season_days: int,
        checkins_by_discord_id,
        completion,
        *,
        page_size: int = UIConstants.STANDINGS_TABLE_ROWS,
        timeout: int = 900
    ):
        super().__init__(timeout=timeout)
        self.standings = standings
        self.season_days = season_days
        self.checkins_by_discord_id = checkins_by_discord_id
        self.completion = completion
        self.page_size = page_size
        self.page = 1
        self.pages = max(1, math.ceil(len(standings) / page_size))
        self._draw_controls()

    def page_of(self, discord_id: int):
        """1-based page holding the player's row, None when they are not in the table"""
        for index, row in enumerate(self.standings):
            if row.discord_id == discord_id:
                return index // self.page_size + 1
        return None

    def render(self) -> str:
        return build_standings_table(
            self.standings,
            self.season_days,
            self.checkins_by_discord_id,
            self.completion,
            limit=self.page_size,
            offset=(self.page - 1) * self.page_size,
        )

    def _draw_controls(self):
        self.clear_items()
        controls = (
            ("◀", self.page <= 1, lambda i: self._go(i, self.page - 1)),
            (f"{self.page}/{self.pages}", True, None),
            ("▶", self.page >= self.pages, lambda i: self._go(i, self.page + 1)),
            ("My row", False, self._mine),
        )
        for label, disabled, handler in controls:
            button = Button(
                label=label,
                style=discord.ButtonStyle.secondary if handler is None else discord.ButtonStyle.primary,
                disabled=disabled,
            )
            if handler is not None:
                button.callback = handler
            self.add_item(button)

    async def _mine(self, interaction: discord.Interaction):
        page = self.page_of(interaction.user.id)
        if page is None:
            await interaction.response.send_message("You are not in the standings.", ephemeral=True)
            return
        await self._go(interaction, page)

    async def _go(self, interaction: discord.Interaction, page: int):
        self.page = min(max(page, 1), self.pages)
        self._draw_controls()
        await interaction.response.edit_message(content=self.render(), view=self)
