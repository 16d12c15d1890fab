#!/usr/bin/env python3
"""
Test runner for Dicebot cog tests.

Runs the engine and property tests (no Discord dependencies) plus the cog
tests, which skip themselves when Red-DiscordBot isn't installed.
"""

import os
import sys
import unittest

# Make the dicebot package importable when run from inside the cog directory
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def run_tests():
    """Run all tests for the Dicebot cog."""

    print("=" * 60)
    print("Dicebot Test Suite")
    print("=" * 60)

    loader = unittest.TestLoader()
    suite = loader.discover(
        os.path.join(os.path.dirname(os.path.abspath(__file__)), "tests"),
        top_level_dir=os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    )

    print("\nRunning tests...")
    print("-" * 40)

    runner = unittest.TextTestRunner(
        verbosity=2,
        stream=sys.stdout,
        descriptions=True
    )

    result = runner.run(suite)

    print("\n" + "=" * 60)
    print("Test Summary")
    print("=" * 60)

    total_tests = result.testsRun
    failures = len(result.failures)
    errors = len(result.errors)
    skipped = len(result.skipped)

    print(f"Total tests run: {total_tests}")
    print(f"Failures: {failures}")
    print(f"Errors: {errors}")
    print(f"Skipped: {skipped}")
    print(f"Success rate: {((total_tests - failures - errors) / total_tests * 100):.1f}%" if total_tests > 0 else "N/A")

    if result.wasSuccessful():
        print("\nAll tests passed!")
        return True

    print("\nSome tests failed!")

    if result.failures:
        print("\nFailures:")
        for test, traceback in result.failures:
            print(f"  - {test}: {traceback.split('AssertionError:')[-1].strip()[:100]}")

    if result.errors:
        print("\nErrors:")
        for test, traceback in result.errors:
            print(f"  - {test}: {traceback.strip().splitlines()[-1][:100]}")

    return False


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
