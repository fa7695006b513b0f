"""
Room state machine tests, driven against the in-memory store.
Tests: lobby, starting, clues, voting, result, end of game, membership.
"""
import pytest

from engine.errors import (
    EmptyWord, InvalidState, NotYourTurn, PermissionDenied, ValidationFailed,
)
from models.commands import (
    BeginArranging, CancelArranging, CastVotes, EndGame, FinishVoting,
    GameSettings, LeaveRoom, RemovePlayer, RenamePlayer, RevealWord,
    SaveSelection, SetContinuePressed, StartGame, SubmitClue, SubmitSpyWordGuess,
)
from helpers import Table
from models.room import NO_ACTIVE_TURN, Outcome, Role, RoomStatus, WordMode
from services.room_session import create_room


async def vote_for(table, accused_for):
    """Every locked player votes; accused_for(voter) returns the ballot."""
    snapshot = await table.snapshot()
    for voter in snapshot.info.locked_players:
        await table.do(CastVotes(actor_id=voter, player_ids=accused_for(voter)))


async def reach_result(table, **settings):
    await table.start(**settings)
    await table.play_all_clues()
    snapshot = await table.snapshot()
    spy = sorted(snapshot.spy_ids())[0]
    await vote_for(table, lambda voter: [spy])
    await table.do(FinishVoting(actor_id=table.host))
    return await table.snapshot()


# =====================================================================
# Guards
# =====================================================================

class TestGuards:
    async def test_non_host_cannot_begin_and_nothing_is_written(self, table, store):
        before = await table.snapshot()
        commits = store.commit_count
        with pytest.raises(PermissionDenied):
            await table.do(BeginArranging(actor_id="p1"))
        assert store.commit_count == commits
        assert await table.snapshot() == before

    async def test_stranger_is_rejected(self, table):
        with pytest.raises(PermissionDenied):
            await table.do(RenamePlayer(actor_id="nobody", name="Zed"))

    async def test_wrong_phase_is_rejected(self, table):
        with pytest.raises(InvalidState):
            await table.do(StartGame(actor_id="host"))

    async def test_begin_needs_enough_players(self, store, machine):
        code = await create_room(store, "solo", "Solo")
        lonely = Table(store, machine, code, "solo", ["solo"])
        with pytest.raises(ValidationFailed):
            await lonely.do(BeginArranging(actor_id="solo"))

    @pytest.mark.parametrize("command", [RevealWord(actor_id="p1"), EndGame(actor_id="p1")])
    async def test_non_host_result_actions_write_nothing(self, table, store, command):
        await reach_result(table, total_rounds=1)
        before = await table.snapshot()
        commits = store.commit_count
        with pytest.raises(PermissionDenied):
            await table.do(command)
        assert store.commit_count == commits
        assert await table.snapshot() == before


# =====================================================================
# Lobby / arranging
# =====================================================================

class TestArranging:
    async def test_begin_and_cancel(self, table):
        await table.do(BeginArranging(actor_id="host"))
        assert (await table.snapshot()).status == RoomStatus.ARRANGING
        await table.do(CancelArranging(actor_id="host"))
        assert (await table.snapshot()).status == RoomStatus.WAITING

    async def test_cancel_keeps_saved_selection(self, table):
        await table.do(BeginArranging(actor_id="host"))
        await table.do(SaveSelection(actor_id="host", player_ids=["host", "p1"]))
        await table.do(CancelArranging(actor_id="host"))
        snapshot = await table.snapshot()
        assert snapshot.info.locked_players == ["host", "p1"]
        assert snapshot.players["p1"].is_selected
        assert not snapshot.players["p2"].is_selected

    async def test_selection_must_name_room_members(self, table):
        await table.do(BeginArranging(actor_id="host"))
        with pytest.raises(ValidationFailed):
            await table.do(SaveSelection(actor_id="host", player_ids=["host", "ghost"]))

    async def test_selection_needs_two_players(self, table):
        await table.do(BeginArranging(actor_id="host"))
        with pytest.raises(ValidationFailed):
            await table.do(SaveSelection(actor_id="host", player_ids=["host"]))


# =====================================================================
# Starting
# =====================================================================

class TestStartGame:
    async def test_start_assigns_roles_and_turn_order(self, table):
        snapshot = await table.start(selected=["host", "p1", "p2"], spy_count=1, total_rounds=2)
        info = snapshot.info
        assert snapshot.status == RoomStatus.STARTED
        assert sorted(info.turn_order) == ["host", "p1", "p2"]
        assert info.current_round == 1
        assert info.current_turn_index == 0
        assert info.word
        assert info.game_id
        assert len(snapshot.spy_ids()) == 1
        assert {snapshot.players[p].role for p in info.locked_players} == {Role.SPY, Role.KNOWER}
        # p3 sits this one out
        assert snapshot.players["p3"].role is None
        assert not snapshot.players["p3"].is_selected

    async def test_spy_count_is_clamped(self, table):
        snapshot = await table.start(selected=["host", "p1"], spy_count=5)
        assert snapshot.info.spy_count == 1
        assert len(snapshot.spy_ids()) == 1

    async def test_custom_word_keeps_host_as_knower(self, table):
        snapshot = await table.start(word_mode=WordMode.CUSTOM, custom_word="  Paris ", spy_count=2)
        assert snapshot.info.word == "Paris"
        assert snapshot.info.category is None
        assert snapshot.players["host"].role == Role.KNOWER
        assert "host" not in snapshot.spy_ids()

    async def test_custom_mode_needs_a_word(self, table):
        await table.do(BeginArranging(actor_id="host"))
        await table.do(SaveSelection(actor_id="host", player_ids=["host", "p1"]))
        with pytest.raises(EmptyWord):
            await table.do(StartGame(
                actor_id="host",
                settings=GameSettings(word_mode=WordMode.CUSTOM, custom_word="   "),
            ))
        assert (await table.snapshot()).status == RoomStatus.ARRANGING

    async def test_rounds_out_of_range(self, table):
        await table.do(BeginArranging(actor_id="host"))
        await table.do(SaveSelection(actor_id="host", player_ids=["host", "p1"]))
        with pytest.raises(ValidationFailed):
            await table.do(StartGame(actor_id="host", settings=GameSettings(total_rounds=0)))

    async def test_explicit_selection_overrides_saved_one(self, table):
        await table.do(BeginArranging(actor_id="host"))
        await table.do(SaveSelection(actor_id="host", player_ids=["host", "p1"]))
        await table.do(StartGame(
            actor_id="host", settings=GameSettings(selected_ids=["p1", "p2", "p3"]),
        ))
        snapshot = await table.snapshot()
        assert sorted(snapshot.info.locked_players) == ["p1", "p2", "p3"]
        assert snapshot.players["host"].role is None


# =====================================================================
# Clues
# =====================================================================

class TestClues:
    async def test_three_players_three_rounds(self, table):
        await table.start(selected=["host", "p1", "p2"], total_rounds=3)
        clues = 0
        snapshot = await table.snapshot()
        while snapshot.status == RoomStatus.STARTED:
            player = snapshot.current_turn_player_id()
            await table.do(SubmitClue(actor_id=player, text=f"w{clues}"))
            clues += 1
            snapshot = await table.snapshot()

        assert clues == 9
        assert snapshot.status == RoomStatus.GUESS_READY
        assert snapshot.info.current_turn_index == NO_ACTIVE_TURN
        assert sorted(snapshot.rounds) == [1, 2, 3]
        for words in snapshot.rounds.values():
            assert sorted(words) == ["host", "p1", "p2"]

    async def test_resubmitting_is_rejected_without_change(self, table, store):
        snapshot = await table.start(selected=["host", "p1"])
        first = snapshot.current_turn_player_id()
        await table.do(SubmitClue(actor_id=first, text="salt"))
        after = await table.snapshot()
        commits = store.commit_count
        with pytest.raises(NotYourTurn):
            await table.do(SubmitClue(actor_id=first, text="salt"))
        assert store.commit_count == commits
        assert await table.snapshot() == after

    async def test_empty_clue_rejected(self, table):
        snapshot = await table.start(selected=["host", "p1"])
        with pytest.raises(EmptyWord):
            await table.do(SubmitClue(actor_id=snapshot.current_turn_player_id(), text="  "))

    async def test_continue_pressed(self, table):
        await table.start(selected=["host", "p1"])
        await table.do(SetContinuePressed(actor_id="p1"))
        snapshot = await table.snapshot()
        assert snapshot.info.continue_pressed == {"p1": True}

    async def test_unselected_player_cannot_continue(self, table):
        await table.start(selected=["host", "p1"])
        with pytest.raises(PermissionDenied):
            await table.do(SetContinuePressed(actor_id="p3"))


# =====================================================================
# Voting and result
# =====================================================================

class TestVoting:
    async def test_ballot_size_must_match_spy_count(self, table):
        await table.start(selected=["host", "p1", "p2"], spy_count=1, total_rounds=1)
        await table.play_all_clues()
        with pytest.raises(ValidationFailed):
            await table.do(CastVotes(actor_id="p1", player_ids=["host", "p2"]))

    async def test_one_ballot_per_player(self, table):
        await table.start(selected=["host", "p1", "p2"], total_rounds=1)
        await table.play_all_clues()
        await table.do(CastVotes(actor_id="p1", player_ids=["p2"]))
        with pytest.raises(InvalidState):
            await table.do(CastVotes(actor_id="p1", player_ids=["host"]))

    async def test_votes_only_for_players_in_game(self, table):
        await table.start(selected=["host", "p1", "p2"], total_rounds=1)
        await table.play_all_clues()
        with pytest.raises(ValidationFailed):
            await table.do(CastVotes(actor_id="p1", player_ids=["p3"]))

    async def test_finish_waits_for_everyone_unless_forced(self, table):
        await table.start(selected=["host", "p1", "p2"], total_rounds=1)
        await table.play_all_clues()
        await table.do(CastVotes(actor_id="p1", player_ids=["p2"]))
        with pytest.raises(InvalidState):
            await table.do(FinishVoting(actor_id="host"))
        await table.do(FinishVoting(actor_id="host", force=True))
        snapshot = await table.snapshot()
        assert snapshot.status == RoomStatus.RESULT
        assert snapshot.info.guessed_spy_ids == ["p2"]

    async def test_only_host_finishes(self, table):
        await table.start(selected=["host", "p1"], total_rounds=1)
        await table.play_all_clues()
        with pytest.raises(PermissionDenied):
            await table.do(FinishVoting(actor_id="p1", force=True))

    async def test_result_status_iff_result_text(self, table):
        snapshot = await table.snapshot()
        assert snapshot.info.result_text is None
        await table.start(total_rounds=1)
        assert (await table.snapshot()).info.result_text is None
        await table.play_all_clues()
        assert (await table.snapshot()).info.result_text is None

        spy = sorted((await table.snapshot()).spy_ids())[0]
        await vote_for(table, lambda voter: [spy])
        await table.do(FinishVoting(actor_id="host"))
        snapshot = await table.snapshot()
        assert snapshot.status == RoomStatus.RESULT
        assert snapshot.info.result_text
        assert snapshot.info.outcome == Outcome.ALL_CAUGHT

        await table.do(EndGame(actor_id="host"))
        assert (await table.snapshot()).info.result_text is None


class TestSpyWordGuess:
    async def test_correct_guess_overrides_result_on_reveal(self, table):
        snapshot = await reach_result(
            table, word_mode=WordMode.CUSTOM, custom_word="Paris", spy_count=1, total_rounds=1,
        )
        assert snapshot.info.outcome == Outcome.ALL_CAUGHT
        spy = sorted(snapshot.spy_ids())[0]

        await table.do(SubmitSpyWordGuess(actor_id=spy, text="  paris "))
        await table.do(RevealWord(actor_id="host"))
        snapshot = await table.snapshot()
        assert snapshot.info.word_revealed
        assert snapshot.info.outcome == Outcome.SPIES_WIN_BY_GUESS
        assert snapshot.info.spy_word_guesses == {spy: "paris"}

    async def test_wrong_guess_keeps_vote_result(self, table):
        snapshot = await reach_result(
            table, word_mode=WordMode.CUSTOM, custom_word="Paris", total_rounds=1,
        )
        spy = sorted(snapshot.spy_ids())[0]
        await table.do(SubmitSpyWordGuess(actor_id=spy, text="London"))
        await table.do(RevealWord(actor_id="host"))
        assert (await table.snapshot()).info.outcome == Outcome.ALL_CAUGHT

    async def test_knowers_cannot_guess(self, table):
        await reach_result(table, word_mode=WordMode.CUSTOM, custom_word="Paris", total_rounds=1)
        with pytest.raises(PermissionDenied):
            await table.do(SubmitSpyWordGuess(actor_id="host", text="Paris"))
        assert (await table.snapshot()).info.spy_word_guesses == {}

    async def test_one_guess_per_spy(self, table):
        snapshot = await reach_result(table, word_mode=WordMode.CUSTOM, custom_word="Paris", total_rounds=1)
        spy = sorted(snapshot.spy_ids())[0]
        await table.do(SubmitSpyWordGuess(actor_id=spy, text="Rome"))
        with pytest.raises(InvalidState):
            await table.do(SubmitSpyWordGuess(actor_id=spy, text="Paris"))

    async def test_no_guess_after_reveal(self, table):
        snapshot = await reach_result(table, word_mode=WordMode.CUSTOM, custom_word="Paris", total_rounds=1)
        spy = sorted(snapshot.spy_ids())[0]
        await table.do(RevealWord(actor_id="host"))
        with pytest.raises(InvalidState):
            await table.do(SubmitSpyWordGuess(actor_id=spy, text="Paris"))
        with pytest.raises(InvalidState):
            await table.do(RevealWord(actor_id="host"))


# =====================================================================
# End of game
# =====================================================================

class TestEndGame:
    async def test_end_resets_room(self, table):
        await reach_result(table, total_rounds=1)
        await table.do(EndGame(actor_id="host"))
        snapshot = await table.snapshot()
        assert snapshot.status == RoomStatus.WAITING
        assert snapshot.info.game_id == ""
        assert snapshot.info.word == ""
        assert snapshot.info.turn_order == []
        assert snapshot.rounds == {}
        assert snapshot.ballots == {}
        assert all(p.role is None for p in snapshot.players.values())
        # the selection survives for the next game
        assert sorted(snapshot.info.locked_players) == ["host", "p1", "p2", "p3"]

    async def test_end_from_started(self, table):
        await table.start(total_rounds=2)
        await table.do(EndGame(actor_id="host"))
        assert (await table.snapshot()).status == RoomStatus.WAITING

    async def test_cannot_end_in_lobby(self, table):
        with pytest.raises(InvalidState):
            await table.do(EndGame(actor_id="host"))

    async def test_previous_game_rows_do_not_leak(self, table, store):
        await reach_result(table, total_rounds=1)
        await table.do(EndGame(actor_id="host"))
        second = await table.start(total_rounds=1)
        assert second.rounds == {}
        assert second.ballots == {}
        first = second.current_turn_player_id()
        await table.do(SubmitClue(actor_id=first, text="fresh"))
        assert (await table.snapshot()).rounds == {1: {first: "fresh"}}


# =====================================================================
# Membership
# =====================================================================

class TestMembership:
    async def test_host_removes_player(self, table):
        await table.do(RemovePlayer(actor_id="host", player_id="p3"))
        assert (await table.snapshot()).player("p3") is None

    async def test_removal_updates_saved_selection(self, table):
        await table.do(BeginArranging(actor_id="host"))
        await table.do(SaveSelection(actor_id="host", player_ids=["host", "p1", "p3"]))
        await table.do(RemovePlayer(actor_id="host", player_id="p3"))
        assert (await table.snapshot()).info.locked_players == ["host", "p1"]

    async def test_host_cannot_remove_self(self, table):
        with pytest.raises(ValidationFailed):
            await table.do(RemovePlayer(actor_id="host", player_id="host"))

    async def test_no_removal_mid_game(self, table):
        await table.start()
        with pytest.raises(InvalidState):
            await table.do(RemovePlayer(actor_id="host", player_id="p3"))

    async def test_only_host_removes(self, table):
        with pytest.raises(PermissionDenied):
            await table.do(RemovePlayer(actor_id="p1", player_id="p2"))

    async def test_rename(self, table):
        await table.do(RenamePlayer(actor_id="p1", name="  Ali   Veli "))
        assert (await table.snapshot()).players["p1"].name == "Ali Veli"

    async def test_rename_too_long(self, table):
        with pytest.raises(ValidationFailed):
            await table.do(RenamePlayer(actor_id="p1", name="x" * 21))

    async def test_player_leaves(self, table):
        await table.do(LeaveRoom(actor_id="p2"))
        assert (await table.snapshot()).player("p2") is None

    async def test_host_leaving_closes_room(self, table, store):
        transition = await table.do(LeaveRoom(actor_id="host"))
        assert transition.delete_room
        assert await store.get(table.code) is None

    async def test_player_in_game_cannot_leave(self, table, store):
        snapshot = await table.start(selected=["host", "p1", "p2"], total_rounds=1)
        leaver = snapshot.info.turn_order[-1]
        if leaver == "host":
            leaver = snapshot.info.turn_order[-2]
        commits = store.commit_count
        with pytest.raises(InvalidState):
            await table.do(LeaveRoom(actor_id=leaver))
        assert store.commit_count == commits

        # every turn still has a player to take it
        finished = await table.play_all_clues()
        assert finished.status == RoomStatus.GUESS_READY
        assert finished.player(leaver) is not None

    async def test_spectator_may_leave_mid_game(self, table):
        await table.start(selected=["host", "p1", "p2"], total_rounds=1)
        await table.do(LeaveRoom(actor_id="p3"))
        snapshot = await table.snapshot()
        assert snapshot.player("p3") is None
        assert snapshot.status == RoomStatus.STARTED

    async def test_leaving_after_game_drops_saved_selection(self, table):
        await reach_result(table, total_rounds=1)
        await table.do(EndGame(actor_id="host"))
        await table.do(LeaveRoom(actor_id="p2"))
        assert (await table.snapshot()).info.locked_players == ["host", "p1", "p3"]
