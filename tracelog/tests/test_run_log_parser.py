import copy
import json
import unittest

from tracelog.parsers.formats import FORMAT_DIRECT, FORMAT_STANDARD, FORMAT_UNKNOWN
from tracelog.parsers.run_log import find_final_output, parse_run_log, summarize_run


def _timing(started_at: str | None, seconds: float = 1.0) -> dict:
    return {"startedAt": started_at, "finishedAt": started_at, "duration": f"{int(seconds * 1000)}ms"}


def _standard_run(steps: dict, **overrides) -> dict:
    log = {
        "ExecutionId": "test-execution",
        "UserId": "test-user",
        "ProjectId": "test-project",
        "Success": True,
        "TimeTrackingData": {
            "startedAt": "2023-01-01T10:00:00.000Z",
            "finishedAt": "2023-01-01T10:00:03.000Z",
            "duration": "3000ms",
        },
        "StepsExecutionContext": steps,
    }
    log.update(overrides)
    return log


STANDARD_FIXTURE = {
    "StepsExecutionContext": {
        "step1": {
            "StepId": "step1",
            "StepType": "InputStep",
            "success": True,
            "TimeTrackingData": {
                "startedAt": "2023-01-01T10:00:00.000Z",
                "finishedAt": "2023-01-01T10:00:01.000Z",
                "duration": "1000ms",
            },
            "Result": {"Value": "Test input"},
        },
        "step2": {
            "StepId": "step2",
            "StepType": "OutputStep",
            "success": True,
            "TimeTrackingData": {
                "startedAt": "2023-01-01T10:00:02.000Z",
                "finishedAt": "2023-01-01T10:00:03.000Z",
                "duration": "1000ms",
            },
            "Input": [{"Value": "Test output"}],
        },
    },
    "ExecutionId": "test-execution",
    "UserId": "test-user",
    "ProjectId": "test-project",
    "Success": True,
    "TimeTrackingData": {
        "startedAt": "2023-01-01T10:00:00.000Z",
        "finishedAt": "2023-01-01T10:00:03.000Z",
        "duration": "3000ms",
    },
}

DIRECT_FIXTURE = {
    "step1": {
        "stepId": "step1",
        "stepType": "InputStep",
        "success": True,
        "timeTrackingData": {
            "startedAt": "2023-01-01T10:00:00.000Z",
            "finishedAt": "2023-01-01T10:00:01.000Z",
            "duration": "1000ms",
        },
        "result": {"value": "Test input"},
    },
    "step2": {
        "stepId": "step2",
        "stepType": "OutputStep",
        "success": True,
        "timeTrackingData": {
            "startedAt": "2023-01-01T10:00:02.000Z",
            "finishedAt": "2023-01-01T10:00:03.000Z",
            "duration": "1000ms",
        },
        "input": [{"value": "Test output"}],
    },
}


class FixtureParsingTests(unittest.TestCase):
    def test_standard_fixture(self) -> None:
        result = parse_run_log(copy.deepcopy(STANDARD_FIXTURE))
        self.assertTrue(result.overview.success)
        self.assertEqual(result.overview.executionId, "test-execution")
        self.assertEqual(result.overview.format, FORMAT_STANDARD)
        self.assertEqual(result.summary.userInput, "Test input")
        self.assertEqual(result.summary.finalOutput, "Test output")
        self.assertEqual(len(result.steps), 2)
        by_type = {step["type"]: step for step in result.steps}
        self.assertEqual(by_type["InputStep"]["input"], "Test input")
        self.assertEqual(by_type["OutputStep"]["output"], "Test output")
        self.assertEqual(result.errors, [])

    def test_direct_fixture(self) -> None:
        result = parse_run_log(copy.deepcopy(DIRECT_FIXTURE))
        self.assertTrue(result.overview.success)
        self.assertEqual(result.overview.format, FORMAT_DIRECT)
        self.assertEqual(result.overview.executionId, "N/A")
        self.assertEqual(result.overview.duration, "3000ms")
        self.assertEqual(result.summary.userInput, "Test input")
        self.assertEqual(result.summary.finalOutput, "Test output")
        self.assertEqual([step["id"] for step in result.steps], ["step1", "step2"])


class ScenarioTests(unittest.TestCase):
    def test_input_step_becomes_user_input(self) -> None:
        log = _standard_run({
            "i": {"StepId": "i", "StepType": "InputStep", "Success": True, "Result": {"Value": "hello"}},
        })
        self.assertEqual(parse_run_log(log).summary.userInput, "hello")

    def test_last_output_step_becomes_final_output(self) -> None:
        log = _standard_run({
            "o": {
                "StepId": "o",
                "StepType": "OutputStep",
                "Success": True,
                "TimeTrackingData": _timing("2023-01-01T10:00:02Z"),
                "Input": [{"Value": "world"}],
            },
        })
        result = parse_run_log(log)
        self.assertEqual(result.steps[0]["output"], "world")
        self.assertEqual(result.summary.finalOutput, "world")

    def test_router_step_decision_and_branches(self) -> None:
        log = _standard_run({
            "r": {
                "StepId": "r",
                "StepType": "RouterStep",
                "Success": True,
                "DebugInformation": {"response": "{\"route\":\"route 4\"}"},
                "Result": {"BranchIds": ["b1"]},
            },
        })
        step = parse_run_log(log).steps[0]
        self.assertEqual(step["routeDecision"]["route"], "route 4")
        self.assertIn("b1", step["branchIds"])

    def test_failed_step_error_is_reported_twice(self) -> None:
        log = _standard_run({
            "p": {
                "StepId": "p",
                "StepType": "PythonStep",
                "Success": False,
                "ExceptionMessage": "NameError: x is not defined",
            },
        })
        result = parse_run_log(log)
        self.assertEqual(result.steps[0]["error"], "NameError: x is not defined")
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].stepId, "p")
        self.assertEqual(result.errors[0].stepType, "PythonStep")
        self.assertEqual(result.errors[0].message, "NameError: x is not defined")

    def test_failed_step_without_message_is_not_an_error(self) -> None:
        log = _standard_run({"p": {"StepId": "p", "StepType": "PythonStep", "Success": False}})
        result = parse_run_log(log)
        self.assertNotIn("error", result.steps[0])
        self.assertEqual(result.errors, [])

    def test_successful_step_message_is_ignored(self) -> None:
        log = _standard_run({
            "p": {"StepId": "p", "StepType": "PythonStep", "Success": True, "ExceptionMessage": "warning"},
        })
        result = parse_run_log(log)
        self.assertNotIn("error", result.steps[0])
        self.assertEqual(result.errors, [])

    def test_unknown_format_yields_failure_result(self) -> None:
        with self.assertLogs("tracelog.parser", level="WARNING"):
            result = parse_run_log({"randomData": True})
        self.assertFalse(result.overview.success)
        self.assertEqual(result.overview.error, "Unknown log format")
        self.assertEqual(result.overview.format, FORMAT_UNKNOWN)
        self.assertEqual(result.steps, [])
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].message, "Could not parse log data. Unknown format.")

    def test_invalid_search_payload_does_not_abort_parse(self) -> None:
        log = _standard_run({
            "d": {"StepId": "d", "StepType": "DataSearch", "Success": True, "Result": {"Value": "not json"}},
        })
        with self.assertLogs("tracelog.parser", level="WARNING"):
            result = parse_run_log(log)
        self.assertNotIn("searchResults", result.steps[0])
        self.assertTrue(result.overview.success)


class OrderingTests(unittest.TestCase):
    def test_steps_are_sorted_by_start_time(self) -> None:
        log = {
            "late": {"stepId": "late", "stepType": "PythonStep", "success": True,
                     "timeTrackingData": _timing("2023-01-01T10:00:05.250Z")},
            "early": {"stepId": "early", "stepType": "PythonStep", "success": True,
                      "timeTrackingData": _timing("2023-01-01T10:00:05.100Z")},
            "untimed": {"stepId": "untimed", "stepType": "PythonStep", "success": True},
        }
        result = parse_run_log(log)
        self.assertEqual([step["id"] for step in result.steps], ["untimed", "early", "late"])

    def test_equal_start_times_keep_encounter_order(self) -> None:
        started = "2023-01-01T10:00:00Z"
        log = {
            key: {"stepId": key, "stepType": "PythonStep", "success": True, "timeTrackingData": _timing(started)}
            for key in ("c", "a", "b")
        }
        self.assertEqual([step["id"] for step in parse_run_log(log).steps], ["c", "a", "b"])

    def test_final_output_follows_chronology_not_encounter_order(self) -> None:
        log = _standard_run({
            "second": {
                "StepId": "second", "StepType": "OutputStep", "Success": True,
                "TimeTrackingData": _timing("2023-01-01T10:00:09Z"),
                "Input": [{"Value": "latest"}],
            },
            "first": {
                "StepId": "first", "StepType": "OutputStep", "Success": True,
                "TimeTrackingData": _timing("2023-01-01T10:00:01Z"),
                "Input": [{"Value": "earliest"}],
            },
        })
        self.assertEqual(parse_run_log(log).summary.finalOutput, "latest")


class FinalOutputFallbackTests(unittest.TestCase):
    def test_falls_back_to_last_model_response(self) -> None:
        log = _standard_run({
            "a1": {"StepId": "a1", "StepType": "AIOperation", "Success": True,
                   "TimeTrackingData": _timing("2023-01-01T10:00:01Z"), "Result": {"Value": "draft"}},
            "a2": {"StepId": "a2", "StepType": "AIOperation", "Success": True,
                   "TimeTrackingData": _timing("2023-01-01T10:00:02Z"), "Result": {"Value": "final"}},
            "a3": {"StepId": "a3", "StepType": "AIOperation", "Success": True,
                   "TimeTrackingData": _timing("2023-01-01T10:00:03Z")},
        })
        self.assertEqual(parse_run_log(log).summary.finalOutput, "final")

    def test_empty_output_step_defers_to_model_response(self) -> None:
        steps = [
            {"type": "AIOperation", "response": "answer"},
            {"type": "OutputStep", "output": ""},
        ]
        self.assertEqual(find_final_output(steps), "answer")

    def test_no_candidates_is_empty(self) -> None:
        self.assertEqual(find_final_output([{"type": "InputStep", "input": "x"}]), "")
        self.assertEqual(find_final_output([]), "")


class OverviewTests(unittest.TestCase):
    def test_standard_success_comes_from_top_level_flag(self) -> None:
        steps = {"p": {"StepId": "p", "StepType": "PythonStep", "Success": False}}
        self.assertTrue(parse_run_log(_standard_run(steps)).overview.success)
        self.assertFalse(parse_run_log(_standard_run(steps, Success=False)).overview.success)

    def test_direct_success_requires_every_step(self) -> None:
        log = copy.deepcopy(DIRECT_FIXTURE)
        self.assertTrue(parse_run_log(log).overview.success)
        log["step2"]["success"] = False
        self.assertFalse(parse_run_log(log).overview.success)

    def test_user_input_is_first_non_empty_input(self) -> None:
        log = _standard_run({
            "blank": {"StepId": "blank", "StepType": "InputStep", "Success": True, "Result": {"Value": ""}},
            "first": {"StepId": "first", "StepType": "InputStep", "Success": True,
                      "TimeTrackingData": _timing("2023-01-01T10:00:05Z"), "Result": {"Value": "a"}},
            "second": {"StepId": "second", "StepType": "InputStep", "Success": True,
                       "TimeTrackingData": _timing("2023-01-01T10:00:01Z"), "Result": {"Value": "b"}},
        })
        self.assertEqual(parse_run_log(log).summary.userInput, "a")

    def test_empty_standard_run_has_no_steps(self) -> None:
        result = parse_run_log(_standard_run({}))
        self.assertEqual(result.overview.format, FORMAT_STANDARD)
        self.assertEqual(result.steps, [])
        self.assertEqual(result.summary.userInput, "")
        self.assertEqual(result.summary.finalOutput, "")


class ResultShapeTests(unittest.TestCase):
    def test_parsing_is_idempotent_and_does_not_mutate_input(self) -> None:
        log = copy.deepcopy(STANDARD_FIXTURE)
        first = parse_run_log(log).to_dict()
        second = parse_run_log(log).to_dict()
        self.assertEqual(first, second)
        self.assertEqual(log, STANDARD_FIXTURE)

    def test_result_survives_json_round_trip(self) -> None:
        payload = parse_run_log(copy.deepcopy(STANDARD_FIXTURE)).to_dict()
        self.assertEqual(json.loads(json.dumps(payload)), payload)
        self.assertNotIn("error", payload["overview"])

    def test_step_errors_omit_absent_ids(self) -> None:
        payload = parse_run_log({"randomData": True}).to_dict()
        self.assertEqual(payload["errors"], [{"message": "Could not parse log data. Unknown format."}])
        self.assertEqual(payload["overview"]["error"], "Unknown log format")

    def test_non_object_payload_is_rejected(self) -> None:
        with self.assertRaises(TypeError):
            parse_run_log([])  # type: ignore[arg-type]


class SummarizeRunTests(unittest.TestCase):
    def test_counts_steps_failures_tokens_and_models(self) -> None:
        log = _standard_run({
            "i": {"StepId": "i", "StepType": "InputStep", "Success": True},
            "a": {"StepId": "a", "StepType": "AIOperation", "Success": True,
                  "DebugInformation": {"modelName": "gpt-4o", "totalTokens": "545"}},
            "b": {"StepId": "b", "StepType": "AIOperation", "Success": False,
                  "DebugInformation": {"modelName": "gpt-4o", "totalTokens": "10"}},
            "r": {"StepId": "r", "StepType": "RouterStep", "Success": True,
                  "DebugInformation": {"modelDisplayName": "Claude", "totalTokens": "n/a"}},
            "x": {"StepId": "x", "StepType": "AIOperation", "Success": True},
        })
        stats = summarize_run(parse_run_log(log))
        self.assertEqual(stats.stepCount, 5)
        self.assertEqual(stats.failedStepCount, 1)
        self.assertEqual(stats.stepsByType, {"InputStep": 1, "AIOperation": 3, "RouterStep": 1})
        self.assertEqual(stats.totalTokens, 555)
        self.assertEqual(stats.models, ["gpt-4o", "Claude"])


if __name__ == "__main__":
    unittest.main()
