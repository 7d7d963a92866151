"""Lifecycle stage ordering."""

from sdlc_governance.services import lifecycle


class TestStages:
    def test_ten_ordered_stages(self):
        assert len(lifecycle.STAGES) == 10
        assert lifecycle.INITIAL_STAGE == "Initiative Submitted"
        assert lifecycle.FINAL_STAGE == "Go Live"

    def test_is_valid(self):
        assert lifecycle.is_valid("RCB")
        assert not lifecycle.is_valid("Done")
        assert not lifecycle.is_valid("rcb")

    def test_index_of_unknown(self):
        assert lifecycle.index_of("Deployment") == 7
        assert lifecycle.index_of("Nope") == -1

    def test_is_forward(self):
        assert lifecycle.is_forward("Kick Off", "ARF")
        assert not lifecycle.is_forward("ARF", "Kick Off")
        assert not lifecycle.is_forward("ARF", "ARF")

    def test_next_stage(self):
        assert lifecycle.next_stage("PTR") == "Go Live"
        assert lifecycle.next_stage("Go Live") is None

    def test_progress(self):
        p = lifecycle.progress("Initiative Approved")
        assert p["index"] == 2
        assert p["percent"] == 30
        assert p["next_stage"] == "Kick Off"
        assert [s["reached"] for s in p["stages"][:4]] == [True, True, True, False]

    def test_progress_unknown_stage(self):
        assert lifecycle.progress("Nope")["percent"] == 0
