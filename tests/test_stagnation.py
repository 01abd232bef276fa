"""
Tests for the stagnation detector.
"""

from bragent.stagnation import StagnationDetector, Verdict


def feed(detector: StagnationDetector, signatures: list[str]) -> list[Verdict]:
    return [detector.observe(s) for s in signatures]


class TestRepetition:
    """Tests for flat repetition."""

    def test_three_repeats_are_fine(self):
        """Three identical signatures do not trigger."""
        detector = StagnationDetector()
        assert feed(detector, ["scroll"] * 3) == [Verdict.OK] * 3

    def test_fourth_repeat_loops(self):
        """The fourth occurrence in the window is a loop."""
        detector = StagnationDetector()
        verdicts = feed(detector, ["click:#a", "scroll", "click:#a", "navigate", "click:#a", "scroll", "click:#a"])
        assert verdicts[-1] == Verdict.LOOP
        assert Verdict.LOOP not in verdicts[:-1]

    def test_repeats_outside_window_are_forgotten(self):
        """Occurrences that slid out of the last 10 do not count."""
        detector = StagnationDetector()
        feed(detector, ["click:#a"] * 3)
        feed(detector, [f"click:#other{i}" for i in range(10)])
        assert detector.observe("click:#a") == Verdict.OK

    def test_window_is_bounded(self):
        """Only the last 10 signatures are retained."""
        detector = StagnationDetector()
        feed(detector, [f"s{i}" for i in range(25)])
        assert detector.recent == [f"s{i}" for i in range(15, 25)]


class TestOscillation:
    """Tests for A-B-A-B alternation."""

    def test_abab_loops(self):
        """Two actions alternating twice are a loop."""
        detector = StagnationDetector()
        verdicts = feed(detector, ["click:#open", "press_key", "click:#open", "press_key"])
        assert verdicts == [Verdict.OK, Verdict.OK, Verdict.OK, Verdict.LOOP]

    def test_aba_is_fine(self):
        """Three alternating steps are not yet a loop."""
        detector = StagnationDetector()
        assert feed(detector, ["a", "b", "a"]) == [Verdict.OK] * 3

    def test_abcb_is_fine(self):
        """A different first step breaks the pattern."""
        detector = StagnationDetector()
        assert feed(detector, ["a", "b", "c", "b"])[-1] == Verdict.OK

    def test_reset_clears_window(self):
        """A reset starts over with an empty window."""
        detector = StagnationDetector()
        feed(detector, ["a", "b", "a"])
        detector.reset()
        assert detector.recent == []
        assert detector.observe("b") == Verdict.OK
