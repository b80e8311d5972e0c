import asyncio

import pytest

from trivia_core import MemoryBackend, Stage, TriviaSession, run_clock

T0 = 1_000_000


class FakeClock:
    def __init__(self, now=T0, step=0):
        self.now = now
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value

    def advance(self, ms):
        self.now += ms


class CapitalValidator:
    def __init__(self):
        self.calls = []

    def validate(self, round, raw_value):
        self.calls.append(raw_value)
        return {"correct": str(raw_value).strip().lower() == "paris", "canonical": "Paris"}


class RecordingSink:
    def __init__(self):
        self.reports = []

    def report(self, report):
        self.reports.append(report)


class BrokenSink:
    def report(self, report):
        raise ConnectionError("leaderboard offline")


class FailingBackend:
    def get_item(self, key):
        raise OSError("storage unavailable")

    def set_item(self, key, value):
        raise OSError("quota exceeded")

    def remove_item(self, key):
        raise OSError("storage unavailable")

    def keys(self):
        raise OSError("storage unavailable")


class SlowMedia:
    def is_ready(self, round):
        return False


def _rounds(media=None):
    return [
        {"id": "q1", "order": 1, "category": "History", "prompt": "Who?", "points": 1, "media": media},
        {"id": "q2", "order": 2, "category": "Sports", "prompt": "How many?", "answerMode": "numeric", "acceptNumbers": [3]},
        {"id": "q3", "order": 3, "category": "Geography", "prompt": "Capital?", "points": 2, "answerMode": "catalog", "answer": "Paris"},
        {"id": "q4", "order": 4, "category": "Τελική ερώτηση — Music", "prompt": "Band?"},
    ]


def _session(clock=None, **kwargs):
    kwargs.setdefault("player_name", "Ann")
    kwargs.setdefault("validator", CapitalValidator())
    return TriviaSession(kwargs.pop("rounds", _rounds()), clock=clock or FakeClock(), **kwargs)


def _to_question(session, index):
    """Walk from INTRO to the QUESTION stage of ``index`` marking earlier rounds correct."""
    session.next()
    for _ in range(index):
        session.next()
        if session.current_round.answer_mode.value == "text":
            session.submit_answer("x")
            session.mark_answer(True)
        else:
            session.submit_answer({"numeric": "3", "catalog": "Paris"}[session.current_round.answer_mode.value])
            session.next()
    session.next()
    assert session.stage is Stage.QUESTION
    assert session.round_index == index


def test_full_run_scores_and_reports_once():
    clock = FakeClock()
    sink = RecordingSink()
    validator = CapitalValidator()
    session = _session(clock, sink=sink, validator=validator, room_code="ROOM1")
    assert session.stage is Stage.INTRO
    assert session.state["startedAt"] == T0

    session.next()
    assert session.arm_power_up()
    session.next()
    session.submit_answer("Napoleon")
    assert session.stage is Stage.ANSWER
    assert not session.can_advance()
    session.mark_answer(True)
    assert session.score == 2

    session.next()
    session.submit_answer("3")
    assert session.state["outcomes"][1] == "correct"
    assert session.can_advance()
    session.next()

    session.next()
    session.submit_answer("paris")
    assert validator.calls == ["paris"]
    assert session.score == 6
    session.next()

    assert session.stage is Stage.CATEGORY and session.is_final_round
    assert not session.arm_power_up()
    assert session.set_wager(3)
    session.next()
    session.submit_answer("Queen")
    assert session.stage is Stage.ANSWER
    assert session.timer is None
    clock.advance(42_000)
    session.mark_answer(True)

    assert session.stage is Stage.RESULTS
    assert session.score == 9
    rows = session.results()
    assert [r.total for r in rows] == [2, 3, 6, 9]
    assert len(sink.reports) == 1
    report = sink.reports[0]
    assert report.final_score == 9 == rows[-1].total
    assert report.max_streak == 3
    assert report.duration_seconds == 42
    assert report.room_code == "ROOM1"

    assert not session.next()
    assert not session.mark_answer(False)
    assert len(sink.reports) == 1


def test_empty_catalog_answer_is_wrong_without_validator_call():
    validator = CapitalValidator()
    session = _session(validator=validator)
    _to_question(session, 2)
    validator.calls.clear()
    session.submit_answer("")
    assert validator.calls == []
    assert session.state["outcomes"][2] == "wrong"
    assert session.state["player"]["streak"] == 0


def test_category_expiry_advances_to_question():
    clock = FakeClock()
    session = _session(clock)
    session.next()
    assert session.stage is Stage.CATEGORY
    clock.advance(20_999)
    session.tick()
    assert session.stage is Stage.CATEGORY
    clock.advance(1)
    session.tick()
    assert session.stage is Stage.QUESTION
    assert session.store.get_deadline("category", 0) is None
    assert session.store.get_deadline("question", 0) == clock.now + 26_000


def test_question_expiry_submits_no_answer():
    clock = FakeClock()
    session = _session(clock)
    _to_question(session, 1)
    clock.advance(26_000)
    session.tick()
    assert session.stage is Stage.ANSWER
    assert session.state["outcomes"][1] == "wrong"
    assert session.state["rawAnswers"][1] == {"value": None}


def test_answer_expiry_closes_round_as_wrong_and_moves_on():
    clock = FakeClock()
    session = _session(clock)
    _to_question(session, 0)
    session.submit_answer("no idea")
    clock.advance(11_000)
    session.tick()
    assert session.stage is Stage.CATEGORY
    assert session.round_index == 1
    assert session.state["outcomes"][0] == "wrong"
    assert session.state["player"]["streak"] == 0
    assert session.state["lastCorrect"] is False


def test_final_answer_phase_has_no_timer():
    clock = FakeClock()
    session = _session(clock)
    _to_question(session, 3)
    session.submit_answer("Queen")
    assert session.stage is Stage.ANSWER
    clock.advance(10 * 60_000)
    assert session.tick() is None
    assert session.stage is Stage.ANSWER
    assert not session.can_advance()

    session.mark_answer(True)
    assert session.stage is Stage.RESULTS
    assert not session.can_advance()

    session.previous()
    assert session.stage is Stage.ANSWER and session.is_final_round
    assert session.can_advance()
    assert not session.mark_answer(False)


def test_reload_resumes_the_running_countdown():
    clock = FakeClock()
    backend = MemoryBackend()
    first = _session(clock, backend=backend)
    _to_question(first, 0)
    clock.advance(10_000)

    second = _session(clock, backend=backend)
    assert second.stage is Stage.QUESTION
    assert second.round_index == 0
    assert second.tick() == 16_000


def test_stale_expiry_is_ignored():
    clock = FakeClock()
    session = _session(clock)
    session.next()
    category_timer = session.timer
    session.next()
    assert session.stage is Stage.QUESTION

    category_timer.poll(clock.now + 60_000)
    assert session.stage is Stage.QUESTION
    assert session.round_index == 0


def test_open_modal_pauses_the_countdown():
    clock = FakeClock()
    session = _session(clock)
    _to_question(session, 0)
    session.set_modal_open(True)
    clock.advance(60_000)
    session.tick()
    assert session.stage is Stage.QUESTION

    session.set_modal_open(False)
    assert session.tick() == 26_000
    assert session.store.get_deadline("question", 0) == clock.now + 26_000


def test_hidden_view_pauses_the_countdown():
    clock = FakeClock()
    session = _session(clock)
    session.next()
    session.set_visibility(True)
    clock.advance(30_000)
    session.tick()
    assert session.stage is Stage.CATEGORY
    session.set_visibility(False)
    clock.advance(21_000)
    session.tick()
    assert session.stage is Stage.QUESTION


def test_question_waits_for_media():
    clock = FakeClock()
    session = _session(clock, rounds=_rounds(media="clip.mp4"), media=SlowMedia())
    _to_question(session, 0)
    assert session.timer.paused
    clock.advance(60_000)
    session.tick()
    assert session.stage is Stage.QUESTION

    session.set_media_ready(True)
    assert session.tick() == 26_000


def test_power_up_only_in_category_and_once():
    session = _session()
    assert not session.arm_power_up()
    session.next()
    assert session.arm_power_up()
    assert not session.arm_power_up()
    assert session.state["powerUp"] == {"available": False, "armedRoundIndex": 0}


def test_reentering_final_category_reverts_the_settlement():
    session = _session()
    _to_question(session, 3)
    session.previous()
    session.set_wager(3)
    session.next()
    session.submit_answer("Queen")
    session.mark_answer(True)
    assert session.stage is Stage.RESULTS
    assert session.score == 8

    session.previous()
    session.previous()
    session.previous()
    assert session.stage is Stage.CATEGORY
    assert session.score == 5
    assert session.state["wager"] == {"amount": 0}
    assert session.state["wagerResolved"] is False
    assert 3 not in session.state["outcomes"]
    assert session.results()[-1].total == session.score


def test_resubmitting_a_scored_round_does_not_rescore():
    session = _session()
    _to_question(session, 1)
    session.submit_answer("3")
    session.previous()
    assert session.stage is Stage.QUESTION
    session.submit_answer("4")
    assert session.state["outcomes"][1] == "correct"
    assert session.state["rawAnswers"][1] == {"value": 3.0}
    assert session.score == 2


def test_failing_sink_does_not_block_results():
    session = _session(sink=BrokenSink())
    _to_question(session, 3)
    session.submit_answer("Queen")
    session.mark_answer(False)
    assert session.stage is Stage.RESULTS
    assert session.state["finishReported"] is True


def test_name_stage_notifies_once():
    backend = MemoryBackend()
    saved = []
    session = _session(backend=backend, player_name=None, on_name_saved=saved.append)
    assert session.stage is Stage.NAME
    assert not session.next()
    assert not session.submit_name("   ")
    assert session.submit_name("  Bob\x00 ")
    assert saved == ["Bob"]
    assert session.stage is Stage.INTRO
    assert session.state["player"]["name"] == "Bob"

    reloaded = _session(backend=backend, player_name="Bob", on_name_saved=saved.append)
    assert reloaded.stage is Stage.INTRO
    assert saved == ["Bob"]


def test_known_name_skips_name_stage():
    saved = []
    session = _session(start_stage="name", on_name_saved=saved.append)
    assert session.stage is Stage.INTRO
    assert saved == ["Ann"]


def test_external_start_time():
    session = _session(started_at_override=5_000)
    assert session.state["startedAt"] == 5_000
    assert not session.set_start_time(7_000)
    assert session.state["startedAt"] == 5_000


def test_reset_clears_persisted_deadlines():
    backend = MemoryBackend()
    session = _session(backend=backend)
    _to_question(session, 1)
    assert any("DeadlineMs" in key for key in backend.data)

    session.reset()
    assert session.stage is Stage.INTRO
    assert session.score == 0
    assert session.state["outcomes"] == {}
    assert session.timer is None
    assert not any("DeadlineMs" in key for key in backend.data)


def test_dispatch():
    session = _session()
    outcome = session.dispatch({"type": "bogus"})
    assert not outcome.applied
    assert outcome.reason.startswith("Invalid action")

    outcome = session.dispatch({"type": "next"})
    assert outcome.applied
    assert outcome.state["stage"] == "category"

    outcome = session.dispatch({"type": "SET_WAGER", "amount": 2})
    assert not outcome.applied
    assert outcome.reason == "SET_WAGER rejected"

    assert not session.dispatch({"type": "MARK_ANSWER"}).applied


def test_dispatch_clamps_wager():
    session = _session()
    _to_question(session, 3)
    session.dispatch({"type": "PREVIOUS"})
    outcome = session.dispatch({"type": "SET_WAGER", "amount": 5})
    assert outcome.applied
    assert outcome.state["wager"] == {"amount": 3}


def test_session_survives_storage_failures():
    session = _session(backend=FailingBackend())
    _to_question(session, 1)
    session.submit_answer("3")
    assert session.state["outcomes"][1] == "correct"
    assert session.store.get("stage") == "answer"


def test_empty_catalog_goes_straight_to_results():
    sink = RecordingSink()
    session = _session(rounds=None, sink=sink)
    assert session.next()
    assert session.stage is Stage.RESULTS
    assert sink.reports[0].final_score == 0


@pytest.mark.parametrize("bad", [None, "junk", {"id": "q1"}])
def test_malformed_catalog_is_playable(bad):
    session = _session(rounds=bad)
    assert session.rounds == ()
    assert session.current_round is None
    assert session.tick() is None


def test_clock_loop_drives_expiries():
    clock = FakeClock(step=1_000)
    session = _session(clock, validator=None)
    session.next()

    async def main():
        stop = asyncio.Event()

        async def watch():
            while not (session.stage is Stage.ANSWER and session.is_final_round):
                await asyncio.sleep(0)
            stop.set()

        await asyncio.gather(run_clock(session, stop=stop, interval_ms=0), watch())

    asyncio.run(main())
    assert session.stage is Stage.ANSWER
    assert session.round_index == 3
    assert session.state["outcomes"] == {0: "wrong", 1: "wrong", 2: "wrong"}
    assert session.score == 0


def test_expired_round_cannot_be_marked_after_stepping_back():
    clock = FakeClock()
    rounds = [{"id": f"t{i}", "order": i, "category": "Mixed", "prompt": "?"} for i in range(5)]
    session = _session(clock, rounds=rounds)
    session.next()
    session.next()
    session.submit_answer("a")
    session.mark_answer(True)

    session.next()
    session.submit_answer("b")
    clock.advance(11_000)
    session.tick()
    assert session.stage is Stage.CATEGORY and session.round_index == 2

    session.previous()
    assert session.stage is Stage.ANSWER and session.round_index == 1
    assert session.can_advance()
    assert not session.mark_answer(True)
    session.next()

    session.next()
    session.submit_answer("c")
    session.mark_answer(True)
    assert session.score == 2
    assert session.score == session.results()[-1].total


def test_corrupt_start_time_does_not_break_results():
    clock = FakeClock()
    sink = RecordingSink()
    backend = MemoryBackend({"quiz_state_v2_solo:v1:startedAt": '"yesterday"'})
    session = _session(clock, backend=backend, version="v1", sink=sink)
    assert session.state["startedAt"] == T0

    _to_question(session, 3)
    clock.advance(30_000)
    session.submit_answer("Queen")
    session.mark_answer(True)
    assert session.stage is Stage.RESULTS
    assert sink.reports[0].duration_seconds == 30
