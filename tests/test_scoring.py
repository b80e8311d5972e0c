from trivia_core import AnswerMode, Round, arm_power_up, award, default_state, penalize, settle_wager
from trivia_core.scoring import award_delta, reopen_wager, record_outcome, set_wager


def _round(points=1, idx=0):
    return Round(
        id=f"q{idx}",
        order=idx,
        category="General",
        prompt="?",
        points=points,
        answer_mode=AnswerMode.TEXT,
    )


def test_three_correct_one_point_rounds_earn_streak_bonus_on_third():
    state = default_state("Ann")
    scores = []
    for i in range(3):
        state = award(state, _round(idx=i), i)
        scores.append(state["player"]["score"])
    assert scores == [1, 2, 4]
    assert state["player"]["streak"] == 3
    assert state["player"]["maxStreak"] == 3


def test_power_up_doubles_points_without_bonus_on_first_correct():
    state = default_state("Ann")
    state["stage"] = "category"
    state = arm_power_up(state, 0, is_final=False)
    assert state["powerUp"] == {"available": False, "armedRoundIndex": 0}
    state = award(state, _round(points=2), 0)
    assert state["player"]["score"] == 4


def test_streak_bonus_is_added_after_doubling():
    assert award_delta(1, 2, True, 3) == 5
    assert award_delta(1, 2, False, 2) == 2


def test_streak_resets_after_wrong_answer():
    state = default_state("Ann")
    deltas = []
    for i, correct in enumerate([True, True, False, True, True, True, True]):
        before = state["player"]["score"]
        state = award(state, _round(idx=i), i) if correct else penalize(state)
        deltas.append(state["player"]["score"] - before)
    assert deltas == [1, 1, 0, 1, 1, 2, 2]
    assert state["player"]["maxStreak"] == 4


def test_penalize_never_subtracts_points():
    state = default_state("Ann")
    state["player"]["score"] = 6
    state["player"]["streak"] = 2
    state["lastCorrect"] = True
    out = penalize(state)
    assert out["player"]["score"] == 6
    assert out["player"]["streak"] == 0
    assert out["lastCorrect"] is False
    # input untouched
    assert state["player"]["streak"] == 2


def test_power_up_arms_once_and_stays_on_first_round():
    state = default_state("Ann")
    state["stage"] = "category"
    state = arm_power_up(state, 1, is_final=False)
    state = arm_power_up(state, 2, is_final=False)
    assert state["powerUp"]["armedRoundIndex"] == 1
    state["powerUp"]["available"] = True
    state = arm_power_up(state, 2, is_final=False)
    assert state["powerUp"]["armedRoundIndex"] == 1


def test_power_up_rejected_on_final_round_and_outside_category():
    state = default_state("Ann")
    state["stage"] = "category"
    assert arm_power_up(state, 3, is_final=True)["powerUp"]["available"] is True
    state["stage"] = "question"
    assert arm_power_up(state, 0, is_final=False)["powerUp"]["armedRoundIndex"] is None


def test_final_wager_settlement_correct_and_wrong():
    base = default_state("Ann")
    base["player"]["score"] = 15
    base["wager"] = {"amount": 2}

    won = settle_wager(base, 3, True)
    assert won["player"]["score"] == 17
    assert won["outcomes"][3] == "final-correct"

    lost = settle_wager(base, 3, False)
    assert lost["player"]["score"] == 13
    assert lost["outcomes"][3] == "final-wrong"


def test_wager_settles_at_most_once():
    state = default_state("Ann")
    state["wager"] = {"amount": 3}
    state = settle_wager(state, 3, True)
    state = settle_wager(state, 3, True)
    state = settle_wager(state, 3, False)
    assert state["player"]["score"] == 3
    assert state["outcomes"][3] == "final-correct"


def test_final_settlement_ignores_streak():
    state = default_state("Ann")
    state["player"]["streak"] = 4
    state["lastCorrect"] = True
    state["wager"] = {"amount": 1}
    state = settle_wager(state, 5, True)
    assert state["player"]["score"] == 1
    assert state["player"]["streak"] == 4


def test_set_wager_clamps_amount():
    state = default_state("Ann")
    assert set_wager(state, 5)["wager"] == {"amount": 3}
    assert set_wager(state, -1)["wager"] == {"amount": 0}
    assert set_wager(state, "2")["wager"] == {"amount": 2}
    assert set_wager(state, "lots")["wager"] == {"amount": 0}


def test_set_wager_locked_after_settlement():
    state = default_state("Ann")
    state["wager"] = {"amount": 1}
    state = settle_wager(state, 2, True)
    assert set_wager(state, 3)["wager"] == {"amount": 1}


def test_reopen_wager_reverts_prior_settlement():
    state = default_state("Ann")
    state["player"]["score"] = 10
    state["wager"] = {"amount": 3}
    state["rawAnswers"] = {2: "Bach"}
    state = settle_wager(state, 2, False)
    assert state["player"]["score"] == 7

    reopened = reopen_wager(state, 2)
    assert reopened["player"]["score"] == 10
    assert 2 not in reopened["outcomes"]
    assert 2 not in reopened["rawAnswers"]
    assert reopened["wager"] == {"amount": 0}
    assert reopened["wagerResolved"] is False


def test_record_outcome_written_once():
    state = default_state("Ann")
    state = record_outcome(state, 0, "correct")
    state = record_outcome(state, 0, "wrong")
    assert state["outcomes"] == {0: "correct"}
    assert record_outcome(state, 1, "maybe")["outcomes"] == {0: "correct"}
