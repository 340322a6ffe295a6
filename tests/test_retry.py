import unittest

from newswire.utils.retry import call_with_retry


class Flaky:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls}")
        return value * 2


class TestCallWithRetry(unittest.TestCase):
    def test_succeeds_after_transient_failures(self):
        sleeps = []
        func = Flaky(failures=2)
        result = call_with_retry(func, 21, max_retries=3, base_delay=1.0, sleep=sleeps.append)

        self.assertEqual(result, 42)
        self.assertEqual(func.calls, 3)
        self.assertEqual(len(sleeps), 2)
        # Exponential base plus up to one second of jitter.
        self.assertTrue(1.0 <= sleeps[0] <= 2.0)
        self.assertTrue(2.0 <= sleeps[1] <= 3.0)

    def test_reraises_last_error(self):
        sleeps = []
        func = Flaky(failures=5)
        with self.assertRaises(ConnectionError) as ctx:
            call_with_retry(func, 1, max_retries=2, sleep=sleeps.append)
        self.assertEqual(str(ctx.exception), "attempt 2")
        self.assertEqual(len(sleeps), 1)

    def test_delay_is_capped(self):
        sleeps = []
        with self.assertRaises(ConnectionError):
            call_with_retry(Flaky(failures=10), 1, max_retries=4, base_delay=10.0, max_delay=15.0, sleep=sleeps.append)
        self.assertEqual(sleeps[-1], 15.0)


if __name__ == "__main__":
    unittest.main()
