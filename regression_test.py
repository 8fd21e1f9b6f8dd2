#!/usr/bin/env python3
"""
md-tasker Regression Test and Metrics Collection

This script replays a complete document workflow against a throwaway
workspace, benchmarks parsing and mutation on a synthetic document, and
writes a JSON result file plus a human-readable report.
"""

import sys
import os
import json
import time
import shutil
import logging
import tempfile
import statistics
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import argparse

import psutil

from mdtasker import mutations
from mdtasker.parser import parse_document
from mdtasker.workflow import WorkflowManager


def build_synthetic_document(projects: int = 20, sections: int = 5, tasks: int = 10) -> str:
    """A document shaped like real use: projects, phases, assigned and costed tasks."""
    lines: List[str] = []
    for p in range(projects):
        lines.append(f"# Project {p}")
        lines.append("")
        for s in range(sections):
            lines.append(f"## Phase {s}")
            for t in range(tasks):
                mark = "x" if t % 3 == 0 else " "
                line = f"- [{mark}] Task {p}.{s}.{t} +2024-07-01 !2024-08-{10 + t % 18:02d} (@user{t % 4}) (${t * 100})"
                if mark == "x":
                    line += " ~2024-07-20"
                lines.append(line)
                if t % 2 == 0:
                    lines.append(f"  - 2024-07-{10 + t % 18:02d}: progress note (@user{t % 4})")
            lines.append("")
    return "\n".join(lines) + "\n"


class RegressionTester:
    """Regression testing and metrics collection for md-tasker."""

    def __init__(self, output_dir: Optional[Path] = None):
        """Initialize regression tester."""
        self.output_dir = output_dir or Path("regression_results")
        self.output_dir.mkdir(exist_ok=True)
        self.results = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "python_version": sys.version,
            "tests": [],
            "metrics": {},
            "summary": {}
        }

        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
        self.logger = logging.getLogger("mdtasker.regression")

        self.performance_data: List[Dict[str, Any]] = []

    def _timed(self, operation: str, func: Callable[[], Any]) -> Dict[str, Any]:
        """Run ``func`` and record its duration and memory footprint."""
        start_time = time.perf_counter()
        try:
            result = func()
            error = None
            if isinstance(result, dict) and "error" in result:
                error = result["error"]
        except Exception as e:
            result = None
            error = str(e)
        duration = time.perf_counter() - start_time

        metrics = {
            "command": operation,
            "duration": duration,
            "success": error is None,
            "error": error,
            "memory_usage": self._get_memory_usage()
        }
        self.performance_data.append(metrics)

        if error is None:
            self.logger.info(f"[PASS] {operation} completed in {duration:.3f}s")
        else:
            self.logger.error(f"[FAIL] {operation} failed in {duration:.3f}s: {error}")
        return {"result": result, "metrics": metrics, "success": error is None}

    def _get_memory_usage(self) -> Dict[str, Any]:
        """Get current memory usage."""
        process = psutil.Process(os.getpid())
        memory_info = process.memory_info()
        return {
            "rss": memory_info.rss,
            "vms": memory_info.vms,
            "percent": process.memory_percent()
        }

    def test_complete_workflow(self) -> Dict[str, Any]:
        """Edit, toggle, reorder, archive and restore through the workflow facade."""
        self.logger.info("Testing complete workflow...")
        workflow_results = {
            "test_name": "complete_workflow",
            "start_time": time.time(),
            "steps": []
        }

        root = Path(tempfile.mkdtemp(prefix="mdtasker-regression-"))
        try:
            manager = WorkflowManager(root)
            document = (
                "# Project Titan\n"
                "## Phase 1: Design\n"
                "- [ ] Wireframes (@alice) ($1500)\n"
                "- [ ] Design system (@alice) ($2500)\n"
                "## Phase 2: Build\n"
                "- [ ] Frontend (@bob)\n"
            )

            def step(name: str, func: Callable[[], Any]) -> None:
                outcome = self._timed(name, func)
                workflow_results["steps"].append({
                    "step": name,
                    "success": outcome["success"],
                    "duration": outcome["metrics"]["duration"],
                })

            step("import_state", lambda: manager.import_state({"markdown": document, "users": []}))
            step("add_user", lambda: manager.add_user("Alice", "alice"))
            step("toggle_task", lambda: manager.toggle_task(2, True, revision=manager.workspace.revision))
            step("reorder_task", lambda: manager.reorder_task(3, "top", revision=manager.workspace.revision))
            step("add_task_updates", lambda: manager.add_task_updates([5], "Started", "bob"))
            step("archive_section", lambda: manager.archive_section(4, 7, revision=manager.workspace.revision))
            step("restore_section", lambda: manager.restore_section(
                manager.workspace.archived_blocks()[0]["start_line"],
                manager.workspace.archived_blocks()[0]["end_line"],
            ))
            step("list_projects", manager.list_projects)
        finally:
            shutil.rmtree(root, ignore_errors=True)

        workflow_results["end_time"] = time.time()
        workflow_results["total_duration"] = workflow_results["end_time"] - workflow_results["start_time"]
        workflow_results["success"] = all(item["success"] for item in workflow_results["steps"])
        return workflow_results

    def test_performance_benchmarks(self, iterations: int = 10) -> Dict[str, Any]:
        """Benchmark parsing and mutation on a synthetic document."""
        self.logger.info("Running performance benchmarks...")
        text = build_synthetic_document()
        line_count = text.count("\n") + 1
        benchmark_results = {
            "test_name": "performance_benchmarks",
            "start_time": time.time(),
            "line_count": line_count,
            "benchmarks": {}
        }

        parsed = parse_document(text)
        first_task = parsed.tasks[0]
        last_section = parsed.sections[-1]
        operations = {
            "parse_document": lambda: parse_document(text),
            "toggle_task": lambda: mutations.toggle_task(text, first_task.line_index, True, today="2024-07-28"),
            "move_section": lambda: mutations.move_section(text, last_section, 0),
            "reorder_task": lambda: mutations.reorder_task(text, first_task, "bottom"),
        }

        success = True
        for name, func in operations.items():
            durations = []
            for _ in range(iterations):
                outcome = self._timed(name, func)
                success = success and outcome["success"]
                durations.append(outcome["metrics"]["duration"])
            benchmark_results["benchmarks"][name] = {
                "iterations": iterations,
                "average": statistics.mean(durations),
                "min": min(durations),
                "max": max(durations),
            }

        benchmark_results["end_time"] = time.time()
        benchmark_results["total_duration"] = benchmark_results["end_time"] - benchmark_results["start_time"]
        benchmark_results["success"] = success
        return benchmark_results

    def test_error_handling(self) -> Dict[str, Any]:
        """Rejected mutations must report an error and leave the document alone."""
        self.logger.info("Testing error handling...")
        error_results = {
            "test_name": "error_handling",
            "start_time": time.time(),
            "cases": []
        }

        root = Path(tempfile.mkdtemp(prefix="mdtasker-regression-"))
        try:
            manager = WorkflowManager(root)
            manager.import_state({"markdown": "# P\n## A\n- [ ] one\n## B\n", "users": []})
            before = manager.workspace.markdown
            cases = {
                "stale_revision": lambda: manager.toggle_task(2, True, revision=manager.workspace.revision - 1),
                "range_invalid": lambda: manager.update_section(5, 9, "x"),
                "section_overlap": lambda: manager.move_section(1, 2, 2),
                "task_not_found": lambda: manager.toggle_task(1, True),
            }
            for name, func in cases.items():
                result = func()
                rejected = "error" in result and manager.workspace.markdown == before
                error_results["cases"].append({
                    "case": name,
                    "success": rejected,
                    "error_type": result.get("error_type"),
                })
        finally:
            shutil.rmtree(root, ignore_errors=True)

        error_results["end_time"] = time.time()
        error_results["total_duration"] = error_results["end_time"] - error_results["start_time"]
        error_results["success"] = all(case["success"] for case in error_results["cases"])
        self.logger.info(f"[PASS] Error handling tests completed in {error_results['total_duration']:.3f}s")
        return error_results

    def collect_system_metrics(self) -> Dict[str, Any]:
        """Collect system and performance metrics."""
        self.logger.info("Collecting system metrics...")

        metrics = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "python_version": sys.version,
            "platform": sys.platform,
            "memory": self._get_memory_usage(),
        }

        command_metrics: Dict[str, List[float]] = {}
        for metric in self.performance_data:
            command_metrics.setdefault(metric["command"], []).append(metric["duration"])

        for command, durations in command_metrics.items():
            metrics[f"{command}_performance"] = {
                "count": len(durations),
                "average": statistics.mean(durations),
                "min": min(durations),
                "max": max(durations),
                "std_dev": statistics.stdev(durations) if len(durations) > 1 else 0
            }

        self.logger.info("[PASS] System metrics collected")
        return metrics

    def run_regression_tests(self) -> Dict[str, Any]:
        """Run all regression tests."""
        self.logger.info("Starting regression tests...")
        start_time = time.time()

        self.results["tests"].append(self.test_complete_workflow())
        self.results["tests"].append(self.test_performance_benchmarks())
        self.results["tests"].append(self.test_error_handling())
        self.results["metrics"] = self.collect_system_metrics()

        total_duration = time.time() - start_time
        passed_tests = sum(1 for test in self.results["tests"] if test.get("success", False))
        total_tests = len(self.results["tests"])

        self.results["summary"] = {
            "total_duration": total_duration,
            "total_tests": total_tests,
            "passed_tests": passed_tests,
            "failed_tests": total_tests - passed_tests,
            "success_rate": passed_tests / total_tests if total_tests > 0 else 0,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        self.logger.info(f"Regression tests completed in {total_duration:.3f}s")
        self.logger.info(f"Results: {passed_tests}/{total_tests} tests passed ({self.results['summary']['success_rate']:.1%})")
        return self.results

    def save_results(self) -> Path:
        """Save regression test results to file."""
        results_file = self.output_dir / f"regression_results_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        with open(results_file, 'w') as f:
            json.dump(self.results, f, indent=2, default=str)
        self.logger.info(f"Results saved to {results_file}")
        return results_file

    def generate_report(self) -> Path:
        """Generate a human-readable regression report."""
        report_file = self.output_dir / f"regression_report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.txt"

        with open(report_file, 'w', encoding='utf-8') as f:
            f.write("md-tasker Regression Test Report\n")
            f.write("=" * 50 + "\n\n")
            f.write(f"Timestamp: {self.results['timestamp']}\n")
            f.write(f"Python Version: {self.results['python_version']}\n\n")

            f.write("SUMMARY\n")
            f.write("-" * 20 + "\n")
            summary = self.results["summary"]
            f.write(f"Total Duration: {summary.get('total_duration', 0):.3f}s\n")
            f.write(f"Total Tests: {summary.get('total_tests', 0)}\n")
            f.write(f"Passed Tests: {summary.get('passed_tests', 0)}\n")
            f.write(f"Failed Tests: {summary.get('failed_tests', 0)}\n")
            f.write(f"Success Rate: {summary.get('success_rate', 0):.1%}\n\n")

            f.write("TEST RESULTS\n")
            f.write("-" * 20 + "\n")
            for test in self.results["tests"]:
                f.write(f"{test['test_name']}\n")
                f.write(f"  Success: {'PASS' if test.get('success') else 'FAIL'}\n")
                if 'total_duration' in test:
                    f.write(f"  Duration: {test['total_duration']:.3f}s\n")
                for item in test.get('steps', []):
                    status = 'PASS' if item.get('success') else 'FAIL'
                    f.write(f"    {item['step']}: {status} ({item['duration']:.3f}s)\n")
                for name, bench in test.get('benchmarks', {}).items():
                    f.write(f"    {name}: avg {bench['average'] * 1000:.2f}ms over {bench['iterations']} runs\n")
                for case in test.get('cases', []):
                    status = 'PASS' if case.get('success') else 'FAIL'
                    f.write(f"    {case['case']}: {status} ({case.get('error_type')})\n")
                f.write("\n")

            memory = self.results["metrics"].get("memory")
            if memory:
                f.write("SYSTEM METRICS\n")
                f.write("-" * 20 + "\n")
                f.write(f"RSS: {memory['rss'] / 1024 / 1024:.1f} MB\n")
                f.write(f"VMS: {memory['vms'] / 1024 / 1024:.1f} MB\n")
                f.write(f"Percent: {memory['percent']:.1f}%\n\n")

        self.logger.info(f"Report generated: {report_file}")
        return report_file


def main():
    """Main entry point for regression testing."""
    parser = argparse.ArgumentParser(description="md-tasker Regression Testing")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("regression_results"),
        help="Output directory for results"
    )
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Run quick regression tests only"
    )

    args = parser.parse_args()
    tester = RegressionTester(args.output_dir)

    if args.quick:
        result = tester.test_complete_workflow()
        tester.results["tests"].append(result)
        tester.results["summary"] = {
            "total_tests": 1,
            "passed_tests": 1 if result.get("success") else 0,
            "failed_tests": 0 if result.get("success") else 1,
            "success_rate": 1 if result.get("success") else 0,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    else:
        tester.run_regression_tests()

    tester.save_results()
    tester.generate_report()

    success = tester.results["summary"]["success_rate"] == 1.0
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
