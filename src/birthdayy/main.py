from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord import app_commands
from discord.ext import tasks

from birthdayy.birthday_commands import BirthdayCommands, CommandReply, render_upcoming
from birthdayy.config_store import ensure_default_config
from birthdayy.message_template import MemberInfo
from birthdayy.reminder_service import DeliveryError, ReminderService
from birthdayy.settings import Settings, load_settings

LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # The gateway is chatty at DEBUG.
    logging.getLogger("discord").setLevel(logging.INFO)


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def user_tag(user: discord.abc.User) -> str:
    # Accounts migrated to unique usernames report discriminator "0".
    if not user.discriminator or user.discriminator == "0":
        return f"@{user.name}"
    return f"{user.name}#{user.discriminator}"


class DiscordSender:
    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def send_message(self, channel_id: int, text: str) -> None:
        try:
            channel = self._client.get_channel(channel_id) or await self._client.fetch_channel(channel_id)
            await channel.send(text)
        except discord.HTTPException as exc:
            raise DeliveryError(f"Could not send to channel {channel_id}: {exc}") from exc


async def run_reminder_pass(service: ReminderService) -> None:
    # An exception escaping a tasks.loop body stops the loop for good.
    try:
        await service.dispatch_due()
        next_at = service.next_reminder_at()
    except Exception:
        LOGGER.exception("Birthday reminder pass failed")
        return

    if next_at is not None:
        LOGGER.debug("Next birthday reminder at %s", next_at.isoformat())


birthday_group = app_commands.Group(
    name="birthday",
    description="Register, update, remove and show birthdays",
    guild_only=True,
)


def _commands(interaction: discord.Interaction) -> BirthdayCommands:
    return interaction.client.birthday_commands  # type: ignore[attr-defined]


def _can_manage_roles(interaction: discord.Interaction) -> bool:
    return bool(interaction.permissions.manage_roles)


async def _reply(interaction: discord.Interaction, reply: CommandReply) -> None:
    await interaction.response.send_message(reply.message, ephemeral=not reply.ok)


@birthday_group.command(name="register", description="Register a birthday")
@app_commands.describe(date="YYYY-MM-DD, MM-DD, DD.MM.YYYY or DD.MM.", user="Member to register, defaults to you")
async def birthday_register(interaction: discord.Interaction, date: str, user: discord.Member | None = None) -> None:
    target = user or interaction.user
    reply = _commands(interaction).register(
        interaction.guild_id,
        interaction.user.id,
        target.id,
        date,
        can_manage_roles=_can_manage_roles(interaction),
    )
    await _reply(interaction, reply)


@birthday_group.command(name="update", description="Change a registered birthday")
@app_commands.describe(date="YYYY-MM-DD, MM-DD, DD.MM.YYYY or DD.MM.", user="Member to update, defaults to you")
async def birthday_update(interaction: discord.Interaction, date: str, user: discord.Member | None = None) -> None:
    target = user or interaction.user
    reply = _commands(interaction).update(
        interaction.guild_id,
        interaction.user.id,
        target.id,
        date,
        can_manage_roles=_can_manage_roles(interaction),
    )
    await _reply(interaction, reply)


@birthday_group.command(name="remove", description="Remove a registered birthday")
@app_commands.describe(user="Member to remove, defaults to you")
async def birthday_remove(interaction: discord.Interaction, user: discord.Member | None = None) -> None:
    target = user or interaction.user
    reply = _commands(interaction).remove(
        interaction.guild_id,
        interaction.user.id,
        target.id,
        can_manage_roles=_can_manage_roles(interaction),
    )
    await _reply(interaction, reply)


@birthday_group.command(name="show", description="Show a member's birthday")
@app_commands.describe(user="Member to show, defaults to you")
async def birthday_show(interaction: discord.Interaction, user: discord.Member | None = None) -> None:
    target = user or interaction.user
    await _reply(interaction, _commands(interaction).show(interaction.guild_id, target.id))


@birthday_group.command(name="list", description="List upcoming birthdays in this server")
async def birthday_list(interaction: discord.Interaction) -> None:
    rows = _commands(interaction).list_upcoming(interaction.guild_id)
    await interaction.response.send_message(render_upcoming(rows))


class BirthdayyClient(discord.Client):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.members = True
        super().__init__(
            intents=intents,
            activity=discord.Activity(type=discord.ActivityType.watching, name="/birthday register 🎂"),
            status=discord.Status.online,
        )
        self.settings = settings
        self.tree = app_commands.CommandTree(self)
        self.tree.add_command(birthday_group)
        self.birthday_commands = BirthdayCommands(settings.birthday_config_path)
        self.reminder_service = ReminderService(
            sender=DiscordSender(self),
            config_path=settings.birthday_config_path,
            reminder_state_path=settings.reminder_state_path,
            resolve_member=self.resolve_member,
        )

    async def setup_hook(self) -> None:
        self.reminder_loop.change_interval(minutes=self.settings.reminder_interval_minutes)
        self.reminder_loop.start()
        await self.tree.sync()

    async def close(self) -> None:
        self.reminder_loop.cancel()
        await super().close()

    async def resolve_member(self, guild_id: int, user_id: int) -> MemberInfo | None:
        guild = self.get_guild(guild_id)
        if guild is None:
            return None

        member = guild.get_member(user_id)
        if member is None:
            try:
                member = await guild.fetch_member(user_id)
            except (discord.NotFound, discord.HTTPException):
                return None

        return MemberInfo(mention=member.mention, name=member.name, tag=user_tag(member))

    @tasks.loop(minutes=5)
    async def reminder_loop(self) -> None:
        await run_reminder_pass(self.reminder_service)

    @reminder_loop.before_loop
    async def _before_reminder_loop(self) -> None:
        await self.wait_until_ready()

    async def on_ready(self) -> None:
        LOGGER.info("Logged in as %s (%s guilds)", self.user, len(self.guilds))


def main() -> None:
    settings = load_settings()
    configure_logging(settings.debug)

    _ensure_parent(settings.birthday_config_path)
    _ensure_parent(settings.reminder_state_path)
    ensure_default_config(settings.birthday_config_path)

    client = BirthdayyClient(settings)
    client.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
