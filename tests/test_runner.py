"""
Test Runner for GeoIP Database Update
=====================================

Runs the unit tests, the integration tests and the function-style
orchestration tests of the GeoIP database update system.
"""

import unittest
import sys
import os
import argparse
import importlib
import time
from typing import List, Optional

# Add parent directory for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

ORCHESTRATION_MODULES = ('test_update_orchestrator', 'test_scheduler')


class GeoDBTestRunner:
    """Test runner for the GeoIP database update system."""

    def __init__(self, verbosity: int = 2, failfast: bool = False):
        """Initialize test runner."""
        self.verbosity = verbosity
        self.failfast = failfast
        self.test_results = []

    def discover_tests(self, test_dir: str) -> unittest.TestSuite:
        """Discover tests in a directory."""
        loader = unittest.TestLoader()
        start_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), test_dir)

        if not os.path.exists(start_dir):
            print(f"Warning: Test directory {start_dir} does not exist")
            return unittest.TestSuite()

        return loader.discover(start_dir, pattern='test_*.py')

    def collect_function_tests(self, module_names) -> unittest.TestSuite:
        """Wrap module-level test_ functions as test cases."""
        suite = unittest.TestSuite()
        for module_name in module_names:
            module = importlib.import_module(module_name)
            for name in sorted(dir(module)):
                func = getattr(module, name)
                if name.startswith('test_') and callable(func):
                    suite.addTest(unittest.FunctionTestCase(func, description=f"{module_name}.{name}"))
        return suite

    def run_test_suite(self, suite: unittest.TestSuite, suite_name: str) -> unittest.TestResult:
        """Run a test suite and collect results."""
        print(f"\n{'='*60}")
        print(f"Running {suite_name} Tests")
        print(f"{'='*60}")

        runner = unittest.TextTestRunner(
            verbosity=self.verbosity,
            stream=sys.stdout,
            descriptions=True,
            failfast=self.failfast
        )

        start_time = time.time()
        result = runner.run(suite)
        end_time = time.time()

        self.test_results.append({
            'suite_name': suite_name,
            'tests_run': result.testsRun,
            'failures': len(result.failures),
            'errors': len(result.errors),
            'skipped': len(result.skipped),
            'success': result.wasSuccessful(),
            'duration': end_time - start_time
        })

        return result

    def run_unit_tests(self) -> unittest.TestResult:
        """Run unit tests."""
        return self.run_test_suite(self.discover_tests('unit'), 'Unit')

    def run_integration_tests(self) -> unittest.TestResult:
        """Run integration tests."""
        return self.run_test_suite(self.discover_tests('integration'), 'Integration')

    def run_orchestration_tests(self) -> unittest.TestResult:
        """Run orchestrator and scheduler tests."""
        return self.run_test_suite(self.collect_function_tests(ORCHESTRATION_MODULES), 'Orchestration')

    def run_all_tests(self) -> List[unittest.TestResult]:
        """Run all test suites."""
        print("Starting test run for GeoIP Database Update System")
        print(f"Python version: {sys.version}")
        print(f"Test runner verbosity: {self.verbosity}")

        return [
            self.run_unit_tests(),
            self.run_orchestration_tests(),
            self.run_integration_tests(),
        ]

    def print_summary(self) -> bool:
        """Print test execution summary."""
        print(f"\n{'='*60}")
        print("TEST EXECUTION SUMMARY")
        print(f"{'='*60}")

        total_tests = 0
        total_failures = 0
        total_errors = 0
        total_duration = 0.0
        all_success = True

        for result in self.test_results:
            print(f"\n{result['suite_name']} Tests:")
            print(f"  Tests run: {result['tests_run']}")
            print(f"  Failures: {result['failures']}")
            print(f"  Errors: {result['errors']}")
            print(f"  Skipped: {result['skipped']}")
            print(f"  Duration: {result['duration']:.2f}s")
            print(f"  Status: {'PASS' if result['success'] else 'FAIL'}")

            total_tests += result['tests_run']
            total_failures += result['failures']
            total_errors += result['errors']
            total_duration += result['duration']
            all_success = all_success and result['success']

        print(f"\n{'='*40}")
        print("OVERALL SUMMARY:")
        print(f"Total tests run: {total_tests}")
        print(f"Total failures: {total_failures}")
        print(f"Total errors: {total_errors}")
        print(f"Total duration: {total_duration:.2f}s")
        print(f"Overall status: {'PASS' if all_success else 'FAIL'}")

        if all_success:
            print("\n🎉 All tests passed!")
        else:
            print("\n❌ Some tests failed.")

        return all_success

    def run_specific_test(self, test_path: str) -> Optional[unittest.TestResult]:
        """Run a specific test module, class or method by dotted name."""
        print(f"Running specific test: {test_path}")

        try:
            suite = unittest.TestLoader().loadTestsFromName(test_path)
        except (ImportError, AttributeError) as e:
            print(f"Error loading test {test_path}: {e}")
            return None

        return self.run_test_suite(suite, 'Specific')


def main():
    """Main entry point for test runner."""
    parser = argparse.ArgumentParser(description='Run GeoIP database update tests')
    parser.add_argument('--verbosity', '-v', type=int, default=2,
                        help='Test verbosity level (0-2)')
    parser.add_argument('--unit', action='store_true',
                        help='Run only unit tests')
    parser.add_argument('--integration', action='store_true',
                        help='Run only integration tests')
    parser.add_argument('--orchestration', action='store_true',
                        help='Run only orchestrator and scheduler tests')
    parser.add_argument('--test', type=str,
                        help='Run specific test (e.g., test_writer.TestLocalFileWriterWrite)')
    parser.add_argument('--failfast', action='store_true',
                        help='Stop on first failure')

    args = parser.parse_args()

    runner = GeoDBTestRunner(verbosity=args.verbosity, failfast=args.failfast)

    if args.test:
        result = runner.run_specific_test(args.test)
        success = result.wasSuccessful() if result else False
    elif args.unit:
        success = runner.run_unit_tests().wasSuccessful()
    elif args.integration:
        success = runner.run_integration_tests().wasSuccessful()
    elif args.orchestration:
        success = runner.run_orchestration_tests().wasSuccessful()
    else:
        runner.run_all_tests()
        success = runner.print_summary()

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
