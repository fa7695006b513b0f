import random
from collections import Counter

import pytest

from engine.role_assigner import RoleAssigner, clamp_spy_count
from models.room import Role, WordMode


class TestClamp:
    @pytest.mark.parametrize("requested,selected,expected", [
        (1, 4, 1),
        (3, 4, 3),
        (4, 4, 3),
        (9, 2, 1),
        (0, 5, 0),
        (-2, 5, 0),
    ])
    def test_at_least_one_knower_remains(self, requested, selected, expected):
        assert clamp_spy_count(requested, selected) == expected


class TestAssign:
    def test_every_selected_player_gets_a_role(self):
        roles = RoleAssigner(random.Random(1)).assign(["a", "b", "c", "d"], 2, WordMode.RANDOM, "a")
        assert set(roles) == {"a", "b", "c", "d"}
        assert Counter(roles.values()) == {Role.SPY: 2, Role.KNOWER: 2}

    def test_spies_are_a_subset_of_selection(self):
        selected = ["p1", "p2", "p3", "p4", "p5"]
        roles = RoleAssigner(random.Random(5)).assign(selected, 2, WordMode.RANDOM, "p1")
        spies = {pid for pid, role in roles.items() if role == Role.SPY}
        assert spies <= set(selected)

    def test_every_player_can_be_a_spy_in_random_mode(self):
        assigner = RoleAssigner(random.Random(42))
        seen = Counter()
        for _ in range(1000):
            roles = assigner.assign(["host", "a", "b", "c"], 1, WordMode.RANDOM, "host")
            seen.update(pid for pid, role in roles.items() if role == Role.SPY)
        assert set(seen) == {"host", "a", "b", "c"}

    def test_custom_mode_never_makes_host_a_spy(self):
        assigner = RoleAssigner(random.Random(42))
        for _ in range(500):
            roles = assigner.assign(["host", "a", "b"], 2, WordMode.CUSTOM, "host")
            assert roles["host"] == Role.KNOWER
            assert Counter(roles.values())[Role.SPY] == 2

    def test_custom_mode_with_two_players(self):
        roles = RoleAssigner(random.Random(0)).assign(["host", "a"], 5, WordMode.CUSTOM, "host")
        assert roles == {"host": Role.KNOWER, "a": Role.SPY}

    def test_fewer_than_two_players_rejected(self):
        with pytest.raises(ValueError):
            RoleAssigner().assign(["solo"], 1, WordMode.RANDOM, "solo")

    def test_duplicate_ids_count_once(self):
        roles = RoleAssigner(random.Random(9)).assign(["a", "a", "b"], 1, WordMode.RANDOM, "a")
        assert set(roles) == {"a", "b"}

    def test_five_players_two_spies_over_many_games(self):
        assigner = RoleAssigner(random.Random(7))
        players = ["host", "a", "b", "c", "d"]
        seen = Counter()
        for _ in range(1000):
            roles = assigner.assign(players, 2, WordMode.RANDOM, "host")
            spies = [pid for pid, role in roles.items() if role == Role.SPY]
            assert len(spies) == 2
            seen.update(spies)
        assert set(seen) == set(players)
