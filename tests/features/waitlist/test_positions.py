from app.features.waitlist.utils.positions import (
    dense_ranks,
    duplicate_positions,
    is_dense,
    plan_moves,
    promotion_target,
    window_bounds,
)


def test_promotion_target_clamps_at_front():
    assert promotion_target(10, 2) == 8
    assert promotion_target(2, 5) == 1
    assert promotion_target(1, 3) == 1


def test_promotion_target_ignores_non_positive_jumps():
    assert promotion_target(7, 0) == 7
    assert promotion_target(7, -3) == 7


def test_window_covers_every_mover_with_margin():
    assert window_bounds([(10, 2)]) == (7, 11)
    assert window_bounds([(10, 2), (51, 5)]) == (7, 52)
    assert window_bounds([(2, 5)]) == (1, 3)


def test_plan_moves_shifts_the_displaced_range_back():
    window = {"h": 7, "x": 8, "y": 9, "a": 10, "z": 11}
    changed, movers = plan_moves(window, [("a", 2)])

    assert changed == {"a": 8, "x": 9, "y": 10}
    assert movers == [("a", 10, 8)]


def test_plan_moves_at_front_is_a_noop():
    window = {"a": 1, "b": 2}
    changed, movers = plan_moves(window, [("a", 3)])

    assert changed == {}
    assert movers == [("a", 1, 1)]


def test_second_move_sees_state_left_by_first():
    # a: 5 -> 3 pushes the entrant at 4 (b) to 5; then b jumps 1 from 5 -> 4
    window = {"c": 3, "b": 4, "a": 5}
    changed, movers = plan_moves(window, [("a", 2), ("b", 1)])

    assert movers == [("a", 5, 3), ("b", 4, 4)]
    assert changed == {"a": 3, "c": 5}
    assert sorted({**window, **changed}.values()) == [3, 4, 5]


def test_dense_ranks_follow_input_order():
    assert dense_ranks(["c", "a", "b"]) == {"c": 1, "a": 2, "b": 3}


def test_duplicate_and_density_checks():
    assert duplicate_positions([1, 2, 2, 3, 3, 3]) == [2, 3]
    assert duplicate_positions([1, 2, 3]) == []
    assert is_dense([3, 1, 2])
    assert not is_dense([1, 2, 4])
    assert not is_dense([1, 1, 2])
    assert is_dense([])
