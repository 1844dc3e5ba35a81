"""Tests for the study session state machine."""

import asyncio

import pytest

from studyspace.core.exceptions import (
    AlreadyFinished,
    CapacityExceeded,
    IndexOutOfRange,
    InvalidTransition,
    NoSession,
    SessionAlreadyExists,
    ValidationError,
)
from studyspace.services.duration import calculate_duration
from studyspace.services.study_session import normalize_goals, normalize_mood_ids
from studyspace.services.study_session_model import Goal, SessionStatus

USER = "user-1"


class TestNormalization:
    """Test goal and mood normalization."""

    def test_goals_trimmed_and_blank_dropped(self):
        goals = normalize_goals(["  read ch.1 ", "", {"text": " review ", "done": True}, {"text": "   "}])
        assert goals == [Goal("read ch.1"), Goal("review", True)]

    def test_goals_capped_at_ten(self):
        goals = normalize_goals([f"goal {i}" for i in range(15)])
        assert len(goals) == 10
        assert goals[-1].text == "goal 9"

    def test_goal_done_must_be_boolean_else_false(self):
        assert normalize_goals([{"text": "x", "done": "yes"}]) == [Goal("x", False)]

    def test_goals_reject_non_list(self):
        with pytest.raises(ValidationError):
            normalize_goals("read")

    def test_goals_reject_bad_entry(self):
        with pytest.raises(ValidationError):
            normalize_goals([42])

    def test_mood_ids_single_string_accepted(self):
        assert normalize_mood_ids(" calm ") == ["calm"]

    def test_mood_ids_deduplicated(self):
        assert normalize_mood_ids(["calm", "calm", " ", "focused"]) == ["calm", "focused"]

    def test_mood_ids_reject_non_strings(self):
        with pytest.raises(ValidationError):
            normalize_mood_ids([1, 2])


class TestStart:
    """Test starting sessions."""

    @pytest.mark.asyncio
    async def test_start_creates_active_session(self, service, clock):
        session = await service.start(USER, goals=["read ch.1"], mood_ids=["calm"], title="Math")

        assert session.status is SessionStatus.ACTIVE
        assert session.start_time == clock.now
        assert session.accumulated_pause_seconds == 0
        assert session.goals == [Goal("read ch.1")]
        assert session.record_id

        stored = await service.get(USER)
        assert stored is not None
        assert stored.record_id == session.record_id
        assert stored.title == "Math"
        assert stored.mood_ids == ["calm"]
        assert stored.space_id is None

    @pytest.mark.asyncio
    async def test_second_start_fails(self, service):
        """Only one session per user may exist."""
        first = await service.start(USER)

        with pytest.raises(SessionAlreadyExists):
            await service.start(USER)

        assert (await service.get(USER)).record_id == first.record_id

    @pytest.mark.asyncio
    async def test_users_are_independent(self, service):
        await service.start("alice")
        await service.start("bob")
        assert (await service.get("alice")).user_id == "alice"
        assert (await service.get("bob")).user_id == "bob"

    @pytest.mark.asyncio
    async def test_blank_space_id_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.start(USER, space_id="   ")
        assert await service.get(USER) is None

    @pytest.mark.asyncio
    async def test_concurrent_starts_only_one_wins(self, service):
        results = await asyncio.gather(
            service.start(USER), service.start(USER), return_exceptions=True
        )
        assert sum(isinstance(r, SessionAlreadyExists) for r in results) == 1

    @pytest.mark.asyncio
    async def test_record_id_differs_per_session(self, service):
        first = await service.start(USER)
        await service.abandon(USER)
        second = await service.start(USER)
        assert first.record_id != second.record_id


class TestTransitions:
    """Test pause / resume / finish."""

    @pytest.mark.asyncio
    async def test_operations_without_session(self, service):
        for operation in (service.pause, service.resume, service.finish):
            with pytest.raises(NoSession):
                await operation(USER)

    @pytest.mark.asyncio
    async def test_pause_caches_duration(self, service, clock):
        await service.start(USER)
        clock.advance(60)

        result = await service.pause(USER)

        assert result.last_paused_at == clock.now
        assert result.duration == 60
        session = await service.get(USER)
        assert session.status is SessionStatus.PAUSED
        assert session.duration == 60

    @pytest.mark.asyncio
    async def test_pause_on_paused_fails(self, service):
        await service.start(USER)
        await service.pause(USER)
        with pytest.raises(InvalidTransition):
            await service.pause(USER)

    @pytest.mark.asyncio
    async def test_resume_on_active_fails(self, service):
        await service.start(USER)
        with pytest.raises(InvalidTransition):
            await service.resume(USER)

    @pytest.mark.asyncio
    async def test_pause_on_finished_fails(self, service):
        await service.start(USER)
        await service.finish(USER)
        with pytest.raises(InvalidTransition):
            await service.pause(USER)

    @pytest.mark.asyncio
    async def test_pause_resume_finish_scenario(self, service, clock):
        """Pause for five seconds in the middle of a session."""
        await service.start(USER, goals=["read ch.1"])
        clock.advance(20)
        await service.pause(USER)
        clock.advance(5)
        resumed = await service.resume(USER)
        clock.advance(10)
        finished = await service.finish(USER)

        assert resumed.accumulated_pause_seconds == pytest.approx(5)
        assert finished.accumulated_pause_seconds == pytest.approx(5)
        assert finished.duration == pytest.approx(35 - 5)

    @pytest.mark.asyncio
    async def test_finish_from_paused_folds_pause(self, service, clock):
        """Finishing while paused counts the open pause interval."""
        session = await service.start(USER)
        clock.advance(30)
        await service.pause(USER)
        clock.advance(12)

        finished = await service.finish(USER)

        stored = await service.get(USER)
        assert stored.status is SessionStatus.FINISHED
        assert stored.accumulated_pause_seconds == pytest.approx(12)
        assert stored.end_time == clock.now
        assert finished.duration == calculate_duration(
            session.start_time, stored.end_time, stored.accumulated_pause_seconds
        )
        assert finished.duration == pytest.approx(30)

    @pytest.mark.asyncio
    async def test_finish_twice_fails_without_mutation(self, service, clock):
        await service.start(USER)
        clock.advance(40)
        first = await service.finish(USER)
        clock.advance(100)

        with pytest.raises(AlreadyFinished):
            await service.finish(USER)

        stored = await service.get(USER)
        assert stored.end_time == first.end_time
        assert stored.duration == first.duration

    @pytest.mark.asyncio
    async def test_finish_allocates_missing_record_id(self, service, store):
        store._memory_store[store.key_for(USER)] = {
            "user_id": USER,
            "start_time": "2026-03-02T08:00:00.000Z",
            "status": "active",
            "accumulatedPauseSeconds": "0",
        }

        finished = await service.finish(USER)

        assert finished.record_id
        assert (await service.get(USER)).record_id == finished.record_id

    @pytest.mark.asyncio
    async def test_accumulator_never_decreases(self, service, clock):
        await service.start(USER)
        seen = [0.0]
        for pause_length in (3, 0, 7, 1):
            clock.advance(10)
            await service.pause(USER)
            clock.advance(pause_length)
            result = await service.resume(USER)
            assert result.duration >= 0
            seen.append(result.accumulated_pause_seconds)

        assert seen == sorted(seen)
        assert seen[-1] == pytest.approx(11)

    @pytest.mark.asyncio
    async def test_backwards_clock_does_not_shrink_accumulator(self, service, clock):
        await service.start(USER)
        clock.advance(10)
        await service.pause(USER)
        clock.advance(-4)
        result = await service.resume(USER)
        assert result.accumulated_pause_seconds == 0
        assert result.duration >= 0


class TestGoals:
    """Test goal mutation."""

    @pytest.mark.asyncio
    async def test_add_goal(self, service):
        await service.start(USER, goals=["a"])
        goals, goal, index = await service.add_goal(USER, "  b  ")
        assert goal == Goal("b")
        assert index == 1
        assert [g.text for g in goals] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_add_goal_requires_text(self, service):
        await service.start(USER)
        with pytest.raises(ValidationError):
            await service.add_goal(USER, "   ")
        with pytest.raises(ValidationError):
            await service.add_goal(USER, None)

    @pytest.mark.asyncio
    async def test_eleventh_goal_rejected(self, service):
        await service.start(USER)
        for i in range(10):
            await service.add_goal(USER, f"goal {i}")

        with pytest.raises(CapacityExceeded):
            await service.add_goal(USER, "one too many")

        assert len((await service.get(USER)).goals) == 10

    @pytest.mark.asyncio
    async def test_toggle_goal(self, service):
        await service.start(USER, goals=["a", "b"])
        goals, goal = await service.toggle_goal(USER, 1, True)
        assert goal == Goal("b", True)
        assert (await service.get(USER)).goals[1].done is True

    @pytest.mark.asyncio
    async def test_toggle_goal_requires_boolean(self, service):
        await service.start(USER, goals=["a"])
        with pytest.raises(ValidationError):
            await service.toggle_goal(USER, 0, "true")

    @pytest.mark.asyncio
    async def test_remove_goal_keeps_order(self, service):
        await service.start(USER, goals=["a", "b", "c"])
        goals, removed = await service.remove_goal(USER, 1)
        assert removed.text == "b"
        assert [g.text for g in goals] == ["a", "c"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [-1, 3, True])
    async def test_bad_index(self, service, index):
        await service.start(USER, goals=["a", "b", "c"])
        with pytest.raises(IndexOutOfRange):
            await service.remove_goal(USER, index)
        with pytest.raises(IndexOutOfRange):
            await service.toggle_goal(USER, index, True)

    @pytest.mark.asyncio
    async def test_goal_mutation_on_finished_session(self, service):
        await service.start(USER, goals=["a"])
        await service.finish(USER)

        with pytest.raises(InvalidTransition):
            await service.add_goal(USER, "b")
        with pytest.raises(InvalidTransition):
            await service.remove_goal(USER, 0)
        with pytest.raises(InvalidTransition):
            await service.toggle_goal(USER, 0, True)

        assert (await service.get(USER)).goals == [Goal("a")]

    @pytest.mark.asyncio
    async def test_goal_mutation_allowed_while_paused(self, service):
        await service.start(USER)
        await service.pause(USER)
        await service.add_goal(USER, "during pause")
        assert len((await service.get(USER)).goals) == 1

    @pytest.mark.asyncio
    async def test_goal_mutation_without_session(self, service):
        with pytest.raises(NoSession):
            await service.add_goal(USER, "a")


class TestMoodQueryAbandon:
    """Test mood selection, snapshot queries and abandoning."""

    @pytest.mark.asyncio
    async def test_set_mood_replaces_selection(self, service):
        await service.start(USER, mood_ids=["calm"])
        assert await service.set_mood(USER, ["focused", "tired"]) == ["focused", "tired"]
        assert (await service.get(USER)).mood_ids == ["focused", "tired"]

    @pytest.mark.asyncio
    async def test_set_mood_on_finished_session(self, service):
        await service.start(USER)
        await service.finish(USER)
        with pytest.raises(InvalidTransition):
            await service.set_mood(USER, ["calm"])

    @pytest.mark.asyncio
    async def test_set_mood_without_session(self, service):
        with pytest.raises(NoSession):
            await service.set_mood(USER, ["calm"])

    @pytest.mark.asyncio
    async def test_get_without_session_returns_none(self, service):
        assert await service.get(USER) is None

    @pytest.mark.asyncio
    async def test_abandon_is_idempotent(self, service):
        await service.start(USER)
        await service.pause(USER)
        await service.abandon(USER)
        await service.abandon(USER)
        assert await service.get(USER) is None
        await service.start(USER)
