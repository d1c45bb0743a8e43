import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

from codey.core.errors import StateError
from codey.core.problems import Problem, TestCase as Case
from codey.core.registry import Challenge, ChallengeRegistry, State


PROBLEM = Problem(name="square", description="Print n*n.", testcases=(Case("2", "4"), Case("3", "9")))
OTHER = Problem(name="echo", description="", testcases=(Case("x", "x"),))


class ChallengeTests(unittest.TestCase):
    def test_starts_active(self):
        challenge = Challenge(PROBLEM, "general", duration=60)
        self.assertIs(challenge.state, State.ACTIVE)
        self.assertAlmostEqual(challenge.expires_at - challenge.created_at, 60)

    def test_finish_is_terminal(self):
        challenge = Challenge(PROBLEM, "general")
        self.assertTrue(challenge.finish())
        self.assertFalse(challenge.finish())
        self.assertIs(challenge.state, State.DONE)

    def test_concurrent_finish_has_one_winner(self):
        challenge = Challenge(PROBLEM, "general")
        barrier = threading.Barrier(16)

        def finish(_):
            barrier.wait()
            return challenge.finish()

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(finish, range(16)))
        self.assertEqual(results.count(True), 1)

    def test_description(self):
        text = str(Challenge(PROBLEM, "general", duration=90))
        self.assertIn("square", text)
        self.assertIn("Print n*n.", text)
        self.assertIn("2 test cases", text)


class ChallengeRegistryTests(unittest.TestCase):
    def test_empty_channel(self):
        registry = ChallengeRegistry()
        self.assertIsNone(registry.show("general"))
        self.assertIsNone(registry.active_challenge("general"))
        with self.assertRaises(StateError):
            registry.require_active("general")

    def test_done_challenge_is_shown_but_not_active(self):
        registry = ChallengeRegistry()
        challenge = registry.create("general", PROBLEM)
        self.assertIs(registry.active_challenge("general"), challenge)

        challenge.finish()
        self.assertIsNone(registry.active_challenge("general"))
        self.assertIs(registry.show("general"), challenge)
        with self.assertRaises(StateError):
            registry.require_active("general")

    def test_create_replaces_active_and_done(self):
        registry = ChallengeRegistry()
        first = registry.create("general", PROBLEM)
        second = registry.create("general", OTHER)
        self.assertIsNot(first, second)
        self.assertIs(registry.show("general"), second)
        self.assertTrue(first.is_active)

        second.finish()
        third = registry.create("general", PROBLEM)
        self.assertIs(registry.active_challenge("general"), third)

    def test_channels_are_independent(self):
        registry = ChallengeRegistry(default_duration=10)
        a = registry.create("a", PROBLEM)
        b = registry.create("b", OTHER, duration=5)
        a.finish()
        self.assertIsNone(registry.active_challenge("a"))
        self.assertIs(registry.active_challenge("b"), b)
        self.assertEqual(a.duration, 10)
        self.assertEqual(b.duration, 5)
        self.assertCountEqual(registry.channels(), ["a", "b"])

    def test_concurrent_creates_leave_one_consistent_entry(self):
        registry = ChallengeRegistry()
        with ThreadPoolExecutor(max_workers=8) as pool:
            created = list(pool.map(lambda _: registry.create("general", PROBLEM), range(100)))
        stored = registry.show("general")
        self.assertIn(stored, created)
        self.assertEqual(registry.channels(), ["general"])


if __name__ == "__main__":
    unittest.main()
