import unittest
from datetime import date

from releasetracker.schemas import ReleaseType
from releasetracker.services.unifier import unify
from fakes import fact


class TestUnify(unittest.TestCase):
    def test_empty_input_is_all_null(self):
        dates = unify([])
        self.assertIsNone(dates.theatrical)
        self.assertIsNone(dates.streaming)
        self.assertIsNone(dates.primary)
        self.assertIsNone(dates.limited)
        self.assertIsNone(dates.digital)

    def test_wide_theatrical_wins_regardless_of_order(self):
        limited = fact(1, ReleaseType.THEATRICAL_LIMITED, date(2025, 11, 1))
        wide = fact(1, ReleaseType.THEATRICAL, date(2025, 11, 21))
        for facts in ([limited, wide], [wide, limited]):
            dates = unify(facts)
            self.assertEqual(dates.theatrical, date(2025, 11, 21))
            self.assertEqual(dates.limited, date(2025, 11, 1))

    def test_limited_fills_theatrical_when_no_wide_release(self):
        dates = unify([fact(1, ReleaseType.THEATRICAL_LIMITED, date(2025, 11, 1))])
        self.assertEqual(dates.theatrical, date(2025, 11, 1))

    def test_digital_takes_streaming_over_physical_and_tv(self):
        facts = [
            fact(1, ReleaseType.TV, date(2026, 3, 1)),
            fact(1, ReleaseType.PHYSICAL, date(2026, 2, 1)),
            fact(1, ReleaseType.DIGITAL, date(2026, 1, 15)),
        ]
        dates = unify(facts)
        self.assertEqual(dates.digital, date(2026, 1, 15))
        self.assertEqual(dates.streaming, date(2026, 1, 15))

    def test_physical_fills_streaming_without_digital(self):
        facts = [fact(1, ReleaseType.TV, date(2026, 3, 1)), fact(1, ReleaseType.PHYSICAL, date(2026, 2, 1))]
        dates = unify(facts)
        self.assertIsNone(dates.digital)
        self.assertEqual(dates.streaming, date(2026, 2, 1))
        self.assertEqual(dates.home_release, date(2026, 2, 1))

    def test_premiere_sets_primary_only(self):
        dates = unify([fact(1, ReleaseType.PREMIERE, date(2025, 9, 1))])
        self.assertEqual(dates.primary, date(2025, 9, 1))
        self.assertIsNone(dates.theatrical)

    def test_other_countries_are_ignored(self):
        facts = [
            fact(1, ReleaseType.THEATRICAL, date(2025, 10, 1), country="GB"),
            fact(1, ReleaseType.DIGITAL, date(2025, 12, 1), country="DE"),
        ]
        dates = unify(facts)
        self.assertIsNone(dates.theatrical)
        self.assertIsNone(dates.streaming)
        self.assertEqual(unify(facts, country="GB").theatrical, date(2025, 10, 1))

    def test_duplicate_kind_last_value_wins(self):
        facts = [
            fact(1, ReleaseType.THEATRICAL, date(2025, 11, 1)),
            fact(1, ReleaseType.THEATRICAL, date(2025, 12, 5)),
        ]
        self.assertEqual(unify(facts).theatrical, date(2025, 12, 5))
        self.assertEqual(unify(list(reversed(facts))).theatrical, date(2025, 11, 1))


if __name__ == "__main__":
    unittest.main()
