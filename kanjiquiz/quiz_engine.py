"""
Quiz engine core logic for the Kanji Quiz Bot.
Runs the round loop for standard, multi-answer, scramble and gauntlet quizzes.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Set, Tuple

from .answers import accepted_set, is_correct, is_scramble_solution, matched_answer
from .data_manager import REVIEW_QUIZ_ID, DeckSource, ReviewStore
from .models import (
    AnswerEvent,
    Card,
    Deck,
    DeckType,
    EndReason,
    GauntletResult,
    PacingProfile,
    QuizOutcome,
    RoundResult,
    ScramblePuzzle,
    StopSignal,
    WinCondition,
)
from .renderer import QuestionRenderer
from .round_timer import (
    DEFAULT_ROUND_TIMEOUT,
    GAUNTLET_TIMEOUT,
    SCRAMBLE_ROUND_TIMEOUT,
    CloseReason,
    RoundTimer,
)
from .scoreboard import Scoreboard
from .session_registry import AnswerRouter, RoundSubscription, SessionRegistry
from .storage import SettingsStore
from .transport import ChatTransport

logger = logging.getLogger(__name__)

TIMEOUT_LIMIT = 5
OUTPUT_CHANNEL_KEY = "output"


@dataclass
class RoundPlan:
    """Everything the round loop needs to run one question."""
    prompt: str
    answers: Tuple[str, ...]
    judge: Callable[[str], Optional[str]]
    claim_count: int = 1
    comment: str = ""
    card: Optional[Card] = None
    multi: bool = False
    as_image: bool = True


class QuizEngine:
    """
    Runs quizzes in chat channels.

    Each public run_* coroutine is meant to be run as its own task. It reserves
    the channel, plays rounds until the deck runs out, a player reaches the win
    score, too many rounds time out, or a stop is requested, and always releases
    the channel before returning.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        router: AnswerRouter,
        deck_source: DeckSource,
        transport: ChatTransport,
        renderer: Optional[QuestionRenderer] = None,
        reviews: Optional[ReviewStore] = None,
        settings: Optional[SettingsStore] = None,
        round_timeout: float = DEFAULT_ROUND_TIMEOUT,
        scramble_timeout: float = SCRAMBLE_ROUND_TIMEOUT,
        gauntlet_duration: float = GAUNTLET_TIMEOUT,
        timeout_limit: int = TIMEOUT_LIMIT,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.registry = registry
        self.router = router
        self.deck_source = deck_source
        self.transport = transport
        self.renderer = renderer
        self.reviews = reviews
        self.settings = settings
        self.round_timeout = round_timeout
        self.scramble_timeout = scramble_timeout
        self.gauntlet_duration = gauntlet_duration
        self.timeout_limit = timeout_limit
        self._clock = clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_quiz(
        self,
        channel_id: int,
        quiz_id: str,
        win: Optional[WinCondition] = None,
        pacing: Optional[PacingProfile] = None,
        multi: bool = False,
    ) -> Optional[QuizOutcome]:
        """
        Run a standard or multi-answer quiz.

        Returns:
            The outcome, or None if the channel already had a quiz running
        """
        win = win or WinCondition()
        pacing = pacing or PacingProfile()

        if not self.registry.reserve(channel_id, "multi" if multi else "quiz"):
            return None

        try:
            # Listen for stop from the moment the channel is reserved
            with self.router.run(channel_id):
                deck = self._load_deck(channel_id, quiz_id)
                if deck.is_empty:
                    await self.transport.send_text(channel_id, f"Failed to find quiz '{quiz_id}'.")
                    return QuizOutcome(channel_id=channel_id, quiz_id=quiz_id, end_reason=EndReason.NOT_FOUND)

                timeout = deck.timeout or self.round_timeout
                await self.transport.send_text(
                    channel_id,
                    f"Starting new {'multi ' if multi else ''}quiz **{quiz_id}** "
                    f"({len(deck)} questions, first to {win.target_score} wins): {deck.description}",
                )

                as_image = deck.deck_type is not DeckType.SCRAMBLE
                plans = (self._card_plan(card, multi, as_image) for card in iter(deck.draw, None))
                return await self._run_rounds(channel_id, quiz_id, plans, timeout, win, pacing)
        finally:
            self.registry.release(channel_id)

    async def run_scramble(
        self,
        channel_id: int,
        difficulty: Tuple[str, int, int],
        win: Optional[WinCondition] = None,
        pacing: Optional[PacingProfile] = None,
    ) -> Optional[QuizOutcome]:
        """Run an English word-scramble quiz; difficulty is (name, low, high) word length."""
        win = win or WinCondition()
        pacing = pacing or PacingProfile()
        name, low, high = difficulty
        quiz_id = f"scramble-{name}"

        if not self.registry.reserve(channel_id, "scramble"):
            return None

        try:
            with self.router.run(channel_id):
                if not self.deck_source.dictionary:
                    await self.transport.send_text(channel_id, "Scramble dictionary is not loaded.")
                    return QuizOutcome(channel_id=channel_id, quiz_id=quiz_id, end_reason=EndReason.NOT_FOUND)

                await self.transport.send_text(
                    channel_id,
                    f"Starting new **{name}** word scramble (first to {win.target_score} wins)",
                )

                puzzles = iter(lambda: self.deck_source.next_scramble(low, high), None)
                plans = (self._scramble_plan(puzzle) for puzzle in puzzles)
                return await self._run_rounds(channel_id, quiz_id, plans, self.scramble_timeout, win, pacing)
        finally:
            self.registry.release(channel_id)

    async def run_gauntlet(
        self,
        channel_id: int,
        player_id: int,
        player_name: str,
        quiz_id: str,
    ) -> Optional[GauntletResult]:
        """
        Run a single-player time trial.

        One timer bounds the whole run. Every message from the player counts as
        an attempt and moves on to the next card.

        Returns:
            The result, or None if the channel was busy or the quiz was not found
        """
        if not self.registry.reserve(channel_id, "gauntlet"):
            return None

        try:
            with self.router.run(channel_id):
                deck = self._load_deck(channel_id, quiz_id)
                if deck.is_empty:
                    await self.transport.send_text(channel_id, f"Failed to find quiz '{quiz_id}'.")
                    return None

                result = GauntletResult(player_id=player_id, player_name=player_name, quiz_id=quiz_id)
                await self.transport.send_text(
                    channel_id,
                    f"Starting **{quiz_id}** gauntlet for {player_name}: "
                    f"{self.gauntlet_duration:g} seconds on the clock!",
                )

                timer = RoundTimer(channel_id, clock=self._clock)
                timer.arm(self.gauntlet_duration)

                for card in iter(deck.draw, None):
                    if self.router.stop_requested(channel_id):
                        break
                    with self.router.subscribe(channel_id) as subscription:
                        await self._announce(channel_id, self._card_plan(card, False, True))
                        event = await self._next_player_event(subscription, timer, player_id)

                    if event is None:
                        break

                    result.attempted += 1
                    if is_correct(event.text, accepted_set(card.answers)):
                        result.correct += 1
                    else:
                        await self.transport.send_text(channel_id, f"✗ {', '.join(card.answers)}")

            await self._send_gauntlet_summary(channel_id, result)
            return result
        finally:
            self.registry.release(channel_id)

    # ------------------------------------------------------------------
    # Round loop
    # ------------------------------------------------------------------

    async def _run_rounds(
        self,
        channel_id: int,
        quiz_id: str,
        plans: Iterable[RoundPlan],
        timeout: float,
        win: WinCondition,
        pacing: PacingProfile,
    ) -> QuizOutcome:
        scoreboard = Scoreboard()
        missed = []
        rounds = 0
        consecutive_timeouts = 0
        reason = EndReason.COMPLETED

        for plan in plans:
            if rounds > 0 and await self.router.pause(channel_id, pacing.round_pause_ms / 1000.0):
                reason = EndReason.STOPPED
                break
            if self.router.stop_requested(channel_id):
                reason = EndReason.STOPPED
                break

            rounds += 1
            result = await self._play_round(channel_id, rounds, plan, timeout, pacing, scoreboard)

            if not result.answered and plan.card is not None:
                missed.append(plan.card)

            if result.stopped:
                reason = EndReason.STOPPED
                break

            if not result.answered:
                consecutive_timeouts += 1
                await self.transport.send_text(channel_id, self._format_timeout(result))
                if consecutive_timeouts >= self.timeout_limit:
                    await self.transport.send_text(
                        channel_id,
                        f"Too many timeouts in a row ({consecutive_timeouts}), aborting quiz.",
                    )
                    reason = EndReason.TIMEOUTS
                    break
                continue

            consecutive_timeouts = 0
            await self.transport.send_text(channel_id, self._format_round(result, scoreboard))

            if scoreboard.reached(result.scorers, win.target_score):
                reason = EndReason.WINNER
                break

        return await self._finish(channel_id, quiz_id, scoreboard, win, reason, rounds, missed)

    async def _play_round(
        self,
        channel_id: int,
        number: int,
        plan: RoundPlan,
        timeout: float,
        pacing: PacingProfile,
        scoreboard: Scoreboard,
    ) -> RoundResult:
        """Announce one question and collect answers until the round closes."""
        result = RoundResult(number=number, prompt=plan.prompt, answers=plan.answers, comment=plan.comment)
        timer = RoundTimer(channel_id, clock=self._clock)

        with self.router.subscribe(channel_id) as subscription:
            await self._announce(channel_id, plan)
            timer.arm(timeout)

            while not timer.is_closed:
                event = await self._next_event(subscription, timer)
                if event is None:
                    break
                if isinstance(event, StopSignal):
                    timer.close(CloseReason.ABORTED)
                    result.stopped = True
                    break
                self._judge(event, plan, result, scoreboard, timer, pacing)

        return result

    async def _next_event(self, subscription: RoundSubscription, timer: RoundTimer):
        """
        Wait for the next event, the round deadline, or a stop.

        Returns None when the deadline passed; the timer is then closed.
        """
        if subscription.pending == 0:
            if timer.expired():
                timer.expire()
                return None
            try:
                event = await asyncio.wait_for(subscription.get(), timeout=timer.remaining())
            except asyncio.TimeoutError:
                timer.expire()
                return None
        else:
            event = await subscription.get()

        if isinstance(event, AnswerEvent) and event.received_at and not timer.accepts(event.received_at):
            timer.expire()
            return None
        return event

    async def _next_player_event(
        self, subscription: RoundSubscription, timer: RoundTimer, player_id: int
    ) -> Optional[AnswerEvent]:
        """Next answer from one player, or None on deadline or stop."""
        while not timer.is_closed:
            event = await self._next_event(subscription, timer)
            if event is None:
                return None
            if isinstance(event, StopSignal):
                timer.close(CloseReason.ABORTED)
                return None
            if event.player_id == player_id:
                return event
        return None

    def _judge(
        self,
        event: AnswerEvent,
        plan: RoundPlan,
        result: RoundResult,
        scoreboard: Scoreboard,
        timer: RoundTimer,
        pacing: PacingProfile,
    ) -> None:
        """Score one answer. The first accepted answer starts the grace window."""
        if not plan.multi and event.player_id in result.scorers:
            return

        claim = plan.judge(event.text)
        if claim is None:
            return

        if plan.multi:
            if claim in result.claims:
                return
            result.claims[claim] = event.player_id

        if event.player_id not in result.scorers:
            result.scorers.append(event.player_id)
        scoreboard.add(event.player_id, event.player_name)

        logger.debug(
            f"Correct answer in channel {timer.channel_id} from {event.player_id}",
            extra={
                'event_type': 'answer_accepted',
                'player_id': event.player_id,
                'round': result.number,
                'timestamp': time.time()
            }
        )

        if result.fastest is None:
            result.fastest = event.player_id
            timer.enter_grace(pacing.answer_window_ms)

        if plan.multi and len(result.claims) >= plan.claim_count:
            timer.close(CloseReason.ALL_CLAIMED)

    # ------------------------------------------------------------------
    # Round plans
    # ------------------------------------------------------------------

    @staticmethod
    def _card_plan(card: Card, multi: bool, as_image: bool) -> RoundPlan:
        accepted = accepted_set(card.answers)
        return RoundPlan(
            prompt=card.question,
            answers=card.answers,
            judge=lambda text: matched_answer(text, accepted),
            claim_count=len(accepted),
            comment=card.comment,
            card=card,
            multi=multi,
            as_image=as_image,
        )

    def _scramble_plan(self, puzzle: ScramblePuzzle) -> RoundPlan:
        dictionary: Set[str] = self.deck_source.dictionary

        def judge(text: str) -> Optional[str]:
            if is_scramble_solution(text, puzzle, dictionary):
                return text.strip().lower()
            return None

        return RoundPlan(
            prompt=puzzle.scrambled,
            answers=puzzle.solutions,
            judge=judge,
            as_image=False,
        )

    def _load_deck(self, channel_id: int, quiz_id: str) -> Deck:
        if quiz_id == REVIEW_QUIZ_ID and self.reviews is not None:
            return self.reviews.take(channel_id)
        return self.deck_source.load(quiz_id)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def _announce(self, channel_id: int, plan: RoundPlan) -> None:
        """Send the question, as an image when possible."""
        if plan.as_image and self.renderer is not None:
            image = self.renderer.render_text(plan.prompt)
            if image:
                await self.transport.send_image(channel_id, image, "word.png")
                return
        await self.transport.send_text(channel_id, f"**{plan.prompt}**")

    @staticmethod
    def _format_timeout(result: RoundResult) -> str:
        text = f":no_entry: Timed out!\nCorrect answer: **{', '.join(result.answers)}**"
        if result.comment:
            text += f"\n{result.comment}"
        return text

    @staticmethod
    def _format_round(result: RoundResult, scoreboard: Scoreboard) -> str:
        lines = [f":white_check_mark: Correct: **{', '.join(result.answers)}**"]
        if result.comment:
            lines.append(result.comment)
        for player_id in result.scorers:
            marker = " (fastest)" if player_id == result.fastest else ""
            lines.append(f"{scoreboard.name(player_id)}: {scoreboard.score(player_id)}{marker}")
        return "\n".join(lines)

    async def _finish(
        self,
        channel_id: int,
        quiz_id: str,
        scoreboard: Scoreboard,
        win: WinCondition,
        reason: EndReason,
        rounds: int,
        missed,
    ) -> QuizOutcome:
        """Emit the final scoreboard and keep unanswered cards for review."""
        standings = scoreboard.standings(win.target_score)

        await self.transport.send_rich_card(channel_id, {
            "title": ":checkered_flag: Final Scoreboard",
            "description": f"{quiz_id}: {rounds} rounds played\n\n{scoreboard.format(win.target_score)}",
            "footer": reason.value,
        })

        if missed and self.reviews is not None:
            self.reviews.put(channel_id, Deck(description=f"Review of {quiz_id}", cards=list(missed)))

        logger.info(
            f"Quiz '{quiz_id}' finished in channel {channel_id}: {reason.value} after {rounds} rounds",
            extra={
                'event_type': 'quiz_finished',
                'channel_id': channel_id,
                'quiz_id': quiz_id,
                'end_reason': reason.value,
                'rounds': rounds,
                'timestamp': time.time()
            }
        )

        return QuizOutcome(
            channel_id=channel_id,
            quiz_id=quiz_id,
            end_reason=reason,
            scores=scoreboard.scores,
            winners=standings.winners,
            participants=standings.participants,
            rounds_played=rounds,
            missed_cards=list(missed),
        )

    async def _send_gauntlet_summary(self, channel_id: int, result: GauntletResult) -> None:
        text = (
            f":stopwatch: Gauntlet **{result.quiz_id}** for {result.player_name}: "
            f"{result.correct}/{result.attempted} correct, score **{result.score:.2f}**"
        )
        await self.transport.send_text(channel_id, text)

        if self.settings is None:
            return
        output = self.settings.get(OUTPUT_CHANNEL_KEY)
        if not output:
            return
        try:
            output_channel = int(output)
        except ValueError:
            logger.error(f"Invalid gauntlet output channel in settings: {output!r}")
            return
        if output_channel != channel_id:
            await self.transport.send_text(output_channel, text)
