import discord
from discord import app_commands
from discord.ext import commands
import logging
import os
from typing import Any, Dict, Mapping, Optional

from .categories import CATEGORIES
from .config_manager import ConfigManager
from .models import Difficulty, QuestionPhase, SessionOutcome, SessionResult, SessionState
from .question_source import QuestionSource
from .quiz_controller import QuizController
from .quiz_session import EVENT_TICK, EVENT_TIMED_OUT, QuizSession

logger = logging.getLogger(__name__)

COLOR_OK = 0x00ff00
COLOR_WARN = 0xff6600
COLOR_ERROR = 0xff0000
COLOR_INFO = 0x3498db
MAX_BUTTON_LABEL = 80


def build_categories_embed(categories: Mapping[str, int] = CATEGORIES) -> discord.Embed:
    """Embed listing the categories and difficulties a quiz can be started with."""
    embed = discord.Embed(
        title="📚 Choose Your Quiz",
        description="Start a quiz with `/quiz category difficulty`.",
        color=COLOR_INFO
    )
    embed.add_field(name="Categories", value="\n".join(f"• {name}" for name in categories), inline=True)
    embed.add_field(
        name="Difficulties",
        value="\n".join(f"• {d.value.capitalize()}" for d in Difficulty),
        inline=True
    )
    return embed


def _timer_style(remaining_time: int):
    if remaining_time > 5:
        return COLOR_OK, "⏱️"
    if remaining_time > 2:
        return COLOR_WARN, "⚠️"
    return COLOR_ERROR, "🚨"


def build_question_embed(session: QuizSession) -> discord.Embed:
    """Embed for the question on display, in either answering or feedback phase."""
    question = session.current_question
    title = f"🎯 Question {session.current_index + 1}/{session.total}"

    if session.phase is QuestionPhase.FEEDBACK:
        selected = session.selected_choice
        if session.timed_out:
            color, verdict = COLOR_ERROR, "⏰ Time's up!"
        elif selected is not None and selected.is_correct:
            color, verdict = COLOR_OK, "✅ Correct!"
        else:
            color, verdict = COLOR_ERROR, "❌ Wrong answer"
    else:
        color, verdict = _timer_style(session.remaining_time)[0], None

    embed = discord.Embed(title=title, description=question.display_prompt, color=color)
    embed.set_author(name=f"{question.display_category} • {question.difficulty.value}")

    if verdict is None:
        emoji = _timer_style(session.remaining_time)[1]
        remaining = session.remaining_time
        embed.add_field(
            name=f"{emoji} Time Remaining",
            value=f"{remaining} second{'s' if remaining != 1 else ''}",
            inline=True
        )
    else:
        correct = next(c for c in session.choices if c.is_correct)
        embed.add_field(name=verdict, value=f"Correct answer: **{correct.display_text}**", inline=False)

    embed.add_field(name="🏆 Score", value=f"{session.score}/{session.total}", inline=True)
    embed.set_footer(text="Pick an answer before time runs out" if verdict is None else
                     ("Finish to see your result" if session.is_last_question else "Continue when ready"))
    return embed


def build_load_failed_embed(message: Optional[str]) -> discord.Embed:
    embed = discord.Embed(
        title="❌ Could Not Load Questions",
        description=message or "Failed to load questions. Please try again.",
        color=COLOR_ERROR
    )
    embed.set_footer(text="Go back to the categories to try another selection")
    return embed


def build_result_embed(result: SessionResult, session: Optional[QuizSession] = None) -> discord.Embed:
    """Embed with the final tally of a session."""
    if result.outcome is SessionOutcome.COMPLETED:
        title = "🎉 Quiz Complete!"
        color = COLOR_OK
    else:
        title = "⏹️ Quiz Stopped"
        color = COLOR_WARN

    embed = discord.Embed(title=title, color=color)
    if session is not None:
        embed.description = f"**{session.category}** ({session.difficulty.value})"
    if result.outcome is SessionOutcome.LOAD_FAILED:
        embed.add_field(name="Result", value="No questions were played.", inline=False)
    else:
        embed.add_field(
            name="🏆 Final Score",
            value=f"{result.score}/{result.total} ({result.percentage}%)",
            inline=False
        )
    embed.set_footer(text="Use /quiz to play again")
    return embed


class AnswerButton(discord.ui.Button):
    """Button for one answer choice, keyed by its position in the shuffled set."""

    def __init__(self, bot: "QuizBot", channel_id: int, session: QuizSession, position: int):
        choice = session.choices[position]
        feedback = session.phase is QuestionPhase.FEEDBACK

        style = discord.ButtonStyle.secondary
        if feedback and choice.is_correct:
            style = discord.ButtonStyle.success
        elif feedback and position == session.selected_position:
            style = discord.ButtonStyle.danger
        elif not feedback:
            style = discord.ButtonStyle.primary

        super().__init__(
            label=choice.display_text[:MAX_BUTTON_LABEL],
            style=style,
            disabled=feedback,
            custom_id=f"trivia:{channel_id}:{session.current_index}:{position}",
            row=position // 5
        )
        self.bot = bot
        self.channel_id = channel_id
        self.session = session
        self.position = position

    async def callback(self, interaction: discord.Interaction):
        await self.bot.handle_answer(interaction, self.channel_id, self.session, self.position)


class NextButton(discord.ui.Button):
    """Advances past the feedback of the current question."""

    def __init__(self, bot: "QuizBot", channel_id: int, session: QuizSession):
        super().__init__(
            label="Finish Quiz" if session.is_last_question else "Next Question",
            style=discord.ButtonStyle.primary,
            custom_id=f"trivia:{channel_id}:{session.current_index}:next",
            row=4
        )
        self.bot = bot
        self.channel_id = channel_id
        self.session = session

    async def callback(self, interaction: discord.Interaction):
        await self.bot.handle_next(interaction, self.channel_id, self.session)


class AnswerView(discord.ui.View):
    """Answer buttons for the current question, plus the next button once feedback is shown."""

    def __init__(self, bot: "QuizBot", channel_id: int, session: QuizSession):
        super().__init__(timeout=None)
        for choice in session.choices:
            self.add_item(AnswerButton(bot, channel_id, session, choice.position))
        if session.phase is QuestionPhase.FEEDBACK:
            self.add_item(NextButton(bot, channel_id, session))


class BackToCategoriesView(discord.ui.View):
    """Single button offered after a load failure."""

    def __init__(self, bot: "QuizBot", channel_id: int, session: QuizSession):
        super().__init__(timeout=None)
        self.bot = bot
        self.channel_id = channel_id
        self.session = session

    @discord.ui.button(label="Back to Categories", style=discord.ButtonStyle.primary)
    async def back_to_categories(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self.bot.handle_back_to_categories(interaction, self.channel_id, self.session)


class QuizBot(commands.Bot):
    """Discord bot for single-player trivia quizzes"""

    def __init__(self, config: Optional[Dict[str, Any]] = None, question_source: Optional[QuestionSource] = None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}
        self.config_manager = ConfigManager()
        config_problems = self.config_manager.apply_config(self.app_config)
        for problem in config_problems:
            logger.warning(f"Configuration: {problem}")

        settings = self.config_manager.get_quiz_settings()
        self.question_source = question_source or QuestionSource(
            CATEGORIES,
            api_url=settings.api_url,
            min_interval=settings.min_request_interval,
            request_timeout=settings.request_timeout
        )
        self.quiz_controller = QuizController(self.question_source, self.config_manager)

        # Channel ID -> message showing the channel's current question, edited with the bot token
        self._quiz_messages: Dict[int, discord.PartialMessage] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up bot components...")
        await self.setup_commands()
        logger.info("Bot setup completed successfully")

    async def close(self):
        await self.quiz_controller.shutdown()
        await super().close()

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="categories", description="List quiz categories and difficulties")
        async def categories_command(interaction: discord.Interaction):
            await self.handle_categories(interaction)

        @self.tree.command(name="quiz", description="Start a trivia quiz")
        @app_commands.describe(category="Question category", difficulty="Question difficulty")
        @app_commands.choices(
            category=[app_commands.Choice(name=name, value=name) for name in CATEGORIES],
            difficulty=[app_commands.Choice(name=d.value.capitalize(), value=d.value) for d in Difficulty]
        )
        async def quiz_command(
            interaction: discord.Interaction,
            category: app_commands.Choice[str],
            difficulty: app_commands.Choice[str]
        ):
            await self.handle_quiz(interaction, category.value, difficulty.value)

        @self.tree.command(name="stop", description="Stop the quiz in this channel")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        @self.tree.command(name="status", description="Show current quiz status and progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    # Command handlers

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        embed = discord.Embed(
            title="❓ Trivia Quiz Help",
            description="Answer multiple-choice trivia questions against the clock.",
            color=COLOR_INFO
        )
        embed.add_field(name="/categories", value="List categories and difficulties", inline=False)
        embed.add_field(name="/quiz", value="Start a quiz for a category and difficulty", inline=False)
        embed.add_field(name="/status", value="Show the progress of the quiz in this channel", inline=False)
        embed.add_field(name="/stop", value="Stop the quiz in this channel", inline=False)
        embed.add_field(name="Settings", value=self.config_manager.get_settings_summary(), inline=False)
        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send help: {e}")

    async def handle_categories(self, interaction: discord.Interaction):
        """Handle /categories command"""
        try:
            await interaction.response.send_message(embed=build_categories_embed(self.question_source.categories))
        except discord.HTTPException as e:
            logger.error(f"Failed to send categories: {e}")

    async def handle_quiz(self, interaction: discord.Interaction, category: str, difficulty: str):
        """Handle /quiz command: load a batch and present the first question"""
        channel_id = interaction.channel_id

        if self.quiz_controller.has_active_session(channel_id):
            await self.send_error_response(
                interaction,
                "A quiz is already running in this channel. Use /stop to end it first.",
                "❌ Quiz Already Running"
            )
            return

        try:
            await interaction.response.send_message(embed=discord.Embed(
                title="⏳ Loading questions...",
                description=f"**{category}** ({difficulty})",
                color=COLOR_INFO
            ))
        except discord.HTTPException as e:
            logger.error(f"Failed to acknowledge quiz command: {e}")
            return

        result = await self.quiz_controller.start_quiz(
            channel_id,
            interaction.user.id,
            category,
            difficulty,
            listener=self._make_session_listener(channel_id)
        )
        session = result.get('session')

        try:
            if result['success']:
                message = await interaction.edit_original_response(
                    embed=build_question_embed(session),
                    view=AnswerView(self, channel_id, session)
                )
                # The interaction token expires after 15 minutes; the bot token does not
                self._quiz_messages[channel_id] = (
                    self.get_partial_messageable(channel_id).get_partial_message(message.id)
                )
            elif result.get('load_failed'):
                await interaction.edit_original_response(
                    embed=build_load_failed_embed(session.error_message),
                    view=BackToCategoriesView(self, channel_id, session)
                )
            else:
                await interaction.edit_original_response(embed=discord.Embed(
                    title="❌ Quiz Start Failed",
                    description=result['user_message'],
                    color=COLOR_ERROR
                ))
        except discord.HTTPException as e:
            logger.error(f"Failed to present quiz in channel {channel_id}: {e}")
            if session is not None and self.quiz_controller.get_session(channel_id) is session:
                self.quiz_controller.abandon_quiz(channel_id)

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        channel_id = interaction.channel_id
        session = self.quiz_controller.get_session(channel_id)

        if session is not None and session.is_active and not self.quiz_controller.is_owner(channel_id, interaction.user.id):
            await self.send_error_response(interaction, "Only the player who started this quiz can stop it.")
            return

        result = self.quiz_controller.abandon_quiz(channel_id)
        if not result['success']:
            await self.send_warning_response(interaction, result['user_message'], "⚠️ Nothing To Stop")
            return

        await self._retire_quiz_message(channel_id)
        try:
            await interaction.response.send_message(embed=build_result_embed(result['result'], session))
        except discord.HTTPException as e:
            logger.error(f"Failed to send stop confirmation: {e}")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        summary = self.quiz_controller.get_session_status_summary(interaction.channel_id)
        await self.send_info_response(interaction, summary, "📊 Quiz Status")

    # Component handlers

    async def _check_component_access(self, interaction: discord.Interaction, channel_id: int,
                                      session: QuizSession) -> bool:
        if self.quiz_controller.get_session(channel_id) is not session:
            await self.send_warning_response(interaction, "This quiz is no longer running.", "⚠️ Quiz Ended")
            return False
        if not self.quiz_controller.is_owner(channel_id, interaction.user.id):
            await self.send_error_response(interaction, "Only the player who started this quiz can answer.")
            return False
        return True

    async def handle_answer(self, interaction: discord.Interaction, channel_id: int,
                            session: QuizSession, position: int):
        """Handle a click on an answer button"""
        if not await self._check_component_access(interaction, channel_id, session):
            return

        if not session.select_answer(position):
            # Late click, e.g. racing the timeout
            await interaction.response.defer()
            return

        try:
            await interaction.response.edit_message(
                embed=build_question_embed(session),
                view=AnswerView(self, channel_id, session)
            )
        except discord.HTTPException as e:
            logger.error(f"Failed to show answer feedback in channel {channel_id}: {e}")

    async def handle_next(self, interaction: discord.Interaction, channel_id: int, session: QuizSession):
        """Handle a click on the next/finish button"""
        if not await self._check_component_access(interaction, channel_id, session):
            return

        if not session.next():
            await interaction.response.defer()
            return

        try:
            if session.state is SessionState.FINISHED:
                self._quiz_messages.pop(channel_id, None)
                await interaction.response.edit_message(embed=build_result_embed(session.result, session), view=None)
            else:
                await interaction.response.edit_message(
                    embed=build_question_embed(session),
                    view=AnswerView(self, channel_id, session)
                )
        except discord.HTTPException as e:
            logger.error(f"Failed to advance quiz in channel {channel_id}: {e}")

    async def handle_back_to_categories(self, interaction: discord.Interaction, channel_id: int,
                                        session: QuizSession):
        """Handle the button shown after a load failure"""
        if self.quiz_controller.get_session(channel_id) is session:
            self.quiz_controller.abandon_quiz(channel_id)
        else:
            session.abandon()

        try:
            await interaction.response.edit_message(
                embed=build_categories_embed(self.question_source.categories),
                view=None
            )
        except discord.HTTPException as e:
            logger.error(f"Failed to return to categories in channel {channel_id}: {e}")

    # Timer-driven updates

    def _make_session_listener(self, channel_id: int):
        def listener(event: str, session: QuizSession):
            if event in (EVENT_TICK, EVENT_TIMED_OUT):
                return self._refresh_question_message(channel_id, session)
            return None
        return listener

    async def _refresh_question_message(self, channel_id: int, session: QuizSession):
        message = self._quiz_messages.get(channel_id)
        if message is None or self.quiz_controller.get_session(channel_id) is not session:
            return
        if session.state is not SessionState.READY:
            return
        try:
            await message.edit(embed=build_question_embed(session), view=AnswerView(self, channel_id, session))
        except discord.HTTPException as e:
            logger.warning(f"Failed to update question message in channel {channel_id}: {e}")

    async def _retire_quiz_message(self, channel_id: int):
        message = self._quiz_messages.pop(channel_id, None)
        if message is None:
            return
        try:
            await message.edit(view=None)
        except discord.HTTPException as e:
            logger.warning(f"Failed to remove buttons from quiz message in channel {channel_id}: {e}")

    # Responses

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send error response to user"""
        await self._send_ephemeral(interaction, message, title, COLOR_ERROR)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send informational response to user"""
        await self._send_ephemeral(interaction, message, title, COLOR_INFO)

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send warning response to user"""
        await self._send_ephemeral(interaction, message, title, 0xffaa00)

    async def _send_ephemeral(self, interaction: discord.Interaction, message: str, title: str, color: int):
        embed = discord.Embed(title=title, description=message, color=color)
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send response to user: {title}")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Trivia Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
