"""
Pass/fail tally for running the test modules as plain scripts.

Each test_*.py module is collected by pytest, and can also be run directly:

    python test_annealing.py
"""

import inspect
import sys
import traceback
import pytest


class ResultTally:
    """Track test results."""
    def __init__(self):
        self.tests_run = 0
        self.tests_passed = 0
        self.tests_failed = 0
        self.failures = []

    def record_pass(self, test_name: str):
        self.tests_run += 1
        self.tests_passed += 1
        print(f"  ✓ PASS: {test_name}")

    def record_fail(self, test_name: str, reason: str):
        self.tests_run += 1
        self.tests_failed += 1
        self.failures.append((test_name, reason))
        print(f"  ✗ FAIL: {test_name}")
        print(f"    Reason: {reason}")

    def summary(self):
        print(f"\n{'='*80}")
        print(f"TEST SUMMARY")
        print(f"{'='*80}")
        print(f"Total tests: {self.tests_run}")
        print(f"Passed: {self.tests_passed}")
        print(f"Failed: {self.tests_failed}")

        if self.tests_failed > 0:
            print(f"\nFailed Tests:")
            for name, reason in self.failures:
                print(f"  - {name}: {reason}")
            return 1
        else:
            print(f"\nALL TESTS PASSED!")
            return 0


def run_module_tests(title: str, namespace: dict) -> int:
    """Run every test_* function of a module namespace and print the tally."""
    print("="*80)
    print(title)
    print("="*80)

    results = ResultTally()
    for name, func in list(namespace.items()):
        if not name.startswith('test_') or not callable(func):
            continue
        if inspect.signature(func).parameters:
            print(f"  - SKIP: {name} (needs pytest fixtures, run with pytest)")
            continue
        try:
            func()
        except (Exception, pytest.fail.Exception) as e:
            results.record_fail(name, f"{type(e).__name__}: {e}")
            traceback.print_exc(file=sys.stdout)
        else:
            results.record_pass(name)

    return results.summary()
