# tests/test_leveling.py
import asyncio
from datetime import datetime, timedelta

import pytest

from skillforge.services.leveling import (
    ProgressUpdate,
    calculate_level,
    calculate_level_progress,
    calculate_mastery_level,
    calculate_streak,
    calculate_xp,
    calculate_xp_for_level,
    calculate_xp_to_next_level,
    check_milestones,
)
from skillforge.utils.errors import PersistenceError, ValidationError, PROGRESS_UPDATE_FAILED


NOW = datetime(2024, 3, 4, 12, 0, 0)


class TestCalculateXP:
    def test_full_accuracy_instant_completion(self):
        assert calculate_xp(3, 1.0, 0, max_time=300) == 510

    def test_no_bonuses(self):
        assert calculate_xp(2, 0.0, 300, max_time=300) == 200

    def test_overtime_does_not_go_negative(self):
        assert calculate_xp(1, 0.0, 10_000, max_time=300) == 100

    def test_streak_bonus_is_capped(self):
        assert calculate_xp(1, 0.0, 300, streak=3, max_time=300) == 130
        assert calculate_xp(1, 0.0, 300, streak=50, max_time=300) == 200

    def test_never_negative(self):
        assert calculate_xp(0, 1.0, 0) == 0
        assert calculate_xp(-2, -1.0, -5, streak=-3) >= 0

    @pytest.mark.parametrize("difficulty", [1, 2.5, 5])
    def test_monotonic_in_accuracy_and_time(self, difficulty):
        accuracies = [0, 0.25, 0.5, 0.75, 1.0]
        by_accuracy = [calculate_xp(difficulty, a, 120, max_time=300) for a in accuracies]
        assert by_accuracy == sorted(by_accuracy)

        times = [0, 30, 150, 299, 300, 600]
        by_time = [calculate_xp(difficulty, 0.8, t, max_time=300) for t in times]
        assert by_time == sorted(by_time, reverse=True)

    def test_zero_max_time_gives_no_time_bonus(self):
        assert calculate_xp(1, 0.0, 0, max_time=0) == 100


class TestLevelCurve:
    def test_level_zero_xp(self):
        assert calculate_level(0) == 1

    def test_thresholds(self):
        assert calculate_level(99) == 1
        assert calculate_level(100) == 2
        assert calculate_level(399) == 2
        assert calculate_level(400) == 3

    def test_non_decreasing(self):
        levels = [calculate_level(xp) for xp in range(0, 20_000, 37)]
        assert levels == sorted(levels)

    @pytest.mark.parametrize("level", [1, 2, 3, 7, 20, 100])
    def test_inverse_of_xp_for_level(self, level):
        assert calculate_level(calculate_xp_for_level(level)) == level

    def test_xp_to_next_level(self):
        assert calculate_xp_to_next_level(0) == 100
        assert calculate_xp_to_next_level(150) == 250
        assert calculate_xp_to_next_level(400) == 500

    def test_level_progress(self):
        progress = calculate_level_progress(250)
        assert progress["current_level"] == 2
        assert progress["xp_in_current_level"] == 150
        assert progress["xp_to_next_level"] == 150
        assert progress["progress_percentage"] == 50


class TestStreak:
    def test_same_day_keeps_streak(self):
        assert calculate_streak(NOW - timedelta(hours=5), 4, True, NOW) == 4
        assert calculate_streak(NOW - timedelta(hours=5), 4, False, NOW) == 4

    def test_next_day_maintained_increments(self):
        assert calculate_streak(NOW - timedelta(days=1, hours=2), 4, True, NOW) == 5

    def test_next_day_not_maintained_resets(self):
        assert calculate_streak(NOW - timedelta(days=1), 4, False, NOW) == 1

    def test_gap_of_two_days_resets(self):
        assert calculate_streak(NOW - timedelta(days=2), 4, True, NOW) == 1
        assert calculate_streak(NOW - timedelta(days=2), 4, False, NOW) == 1

    def test_no_prior_activity_keeps_streak(self):
        assert calculate_streak(None, 0, True, NOW) == 0


class TestMastery:
    def test_components(self):
        assert calculate_mastery_level(1, 0) == 0
        assert calculate_mastery_level(3, 5) == 20

    def test_clamped_to_100(self):
        assert calculate_mastery_level(50, 200) == 100


def _update(**overrides):
    values = dict(
        user_id="u", skill_id=1, old_level=4, new_level=5, level_up=True, xp_gained=200,
        total_xp=1100, old_streak=6, new_streak=7, streak_maintained=True, mastery_level=34,
        assessments_completed=1, average_score=1.0, is_new_progress=False,
    )
    values.update(overrides)
    return ProgressUpdate(**values)


def test_milestones_crossed():
    milestones = check_milestones(_update())
    kinds = {m["type"] for m in milestones}
    assert kinds == {"level", "streak", "xp"}
    assert {"type": "streak", "milestone": "7 Day Streak", "streak": 7} in milestones


def test_same_day_streak_does_not_repeat_milestone():
    assert check_milestones(_update(level_up=False, old_level=5, old_streak=7, total_xp=1700)) == []


class TestProgressEngine:
    def _make_skill(self, services, name="Python", category="Programming"):
        async def _create():
            await services.gateway.get_or_create_user("learner")
            return await services.gateway.create_skill(name, category, 5)
        return _create()

    def test_lazily_creates_progress(self, run_with_services):
        async def scenario(services):
            skill = await self._make_skill(services)
            update = await services.progress.update_progress("learner", skill.id, 150)
            row = await services.gateway.get_progress("learner", skill.id)
            return update, row

        update, row = run_with_services(scenario)
        assert update.is_new_progress is True
        assert update.old_level == 1 and update.new_level == 2 and update.level_up is True
        assert row.xp == 150 and row.level == 2 and row.streak == 0
        assert row.mastery_level == calculate_mastery_level(2, 0)

    def test_same_day_updates_keep_streak(self, run_with_services, clock):
        async def scenario(services):
            skill = await self._make_skill(services)
            first = await services.progress.update_progress("learner", skill.id, 10, True)
            clock.advance(hours=3)
            second = await services.progress.update_progress("learner", skill.id, 10, True)
            return first, second

        first, second = run_with_services(scenario)
        assert first.new_streak == second.new_streak == 0

    def test_streak_across_days(self, run_with_services, clock):
        async def scenario(services):
            skill = await self._make_skill(services)
            await services.progress.update_progress("learner", skill.id, 10)
            clock.advance(days=1)
            next_day = await services.progress.update_progress("learner", skill.id, 10)
            clock.advance(days=2)
            after_gap = await services.progress.update_progress("learner", skill.id, 10)
            return next_day, after_gap

        next_day, after_gap = run_with_services(scenario)
        assert next_day.new_streak == 1
        assert after_gap.old_streak == 1 and after_gap.new_streak == 1

    def test_score_updates_running_average(self, run_with_services):
        async def scenario(services):
            skill = await self._make_skill(services)
            await services.progress.update_progress("learner", skill.id, 10, score=1.0)
            return await services.progress.update_progress("learner", skill.id, 10, score=0.5)

        update = run_with_services(scenario)
        assert update.assessments_completed == 2
        assert update.average_score == pytest.approx(0.75)

    def test_negative_xp_rejected(self, run_with_services):
        async def scenario(services):
            skill = await self._make_skill(services)
            with pytest.raises(ValidationError):
                await services.progress.update_progress("learner", skill.id, -5)
            return await services.gateway.get_progress("learner", skill.id)

        assert run_with_services(scenario) is None

    def test_concurrent_updates_for_one_user_are_serialized(self, run_with_services):
        async def scenario(services):
            skill = await self._make_skill(services)
            await asyncio.gather(*[
                services.progress.update_progress("learner", skill.id, 25) for _ in range(8)
            ])
            return await services.gateway.get_progress("learner", skill.id), len(services.progress.locks)

        row, open_locks = run_with_services(scenario)
        assert row.xp == 200
        assert row.level == calculate_level(200)
        assert open_locks == 0

    def test_persistence_failure_writes_nothing(self, run_with_services):
        async def scenario(services):
            skill = await self._make_skill(services)
            await services.progress.update_progress("learner", skill.id, 50)

            async def broken_upsert(*args, **kwargs):
                raise PersistenceError("Failed to update progress")

            services.gateway.upsert_progress = broken_upsert
            with pytest.raises(PersistenceError) as excinfo:
                await services.progress.update_progress("learner", skill.id, 500)
            return excinfo.value, await services.gateway.get_progress("learner", skill.id)

        error, row = run_with_services(scenario)
        assert error.error_code == PROGRESS_UPDATE_FAILED
        assert row.xp == 50 and row.level == 1

    def test_stats_and_leaderboard(self, run_with_services):
        async def scenario(services):
            skill = await self._make_skill(services)
            await services.gateway.get_or_create_user("rival")
            await services.progress.update_progress("learner", skill.id, 900)
            await services.progress.update_progress("rival", skill.id, 100)
            stats = await services.progress.get_progress_stats("learner")
            board = await services.progress.get_leaderboard(10)
            return stats, board

        stats, board = run_with_services(scenario)
        assert stats["stats"]["total_xp"] == 900
        assert stats["user_level"] == 4
        assert stats["recent_activity"][0]["skill_name"] == "Python"
        assert [entry["user_id"] for entry in board] == ["learner", "rival"]
        assert board[0]["rank"] == 1 and board[0]["user_level"] == 4

    def test_seven_activity_days_make_a_six_day_streak(self, run_with_services, clock):
        async def scenario(services):
            skill = await self._make_skill(services)
            updates = []
            for _ in range(7):
                updates.append(await services.progress.update_progress("learner", skill.id, 10))
                clock.advance(days=1)
            unlocked = await services.achievements.check_achievements("learner", "progress_update")
            return updates, {a.id for a in unlocked}

        updates, unlocked = run_with_services(scenario)
        assert [u.new_streak for u in updates] == [0, 1, 2, 3, 4, 5, 6]
        assert not any(m["type"] == "streak" for u in updates for m in check_milestones(u))
        assert "streak_starter" not in unlocked
