"""
Unit tests for the audit trail loggers.
"""

import structlog

from opm_backsolve.solvers.backsolve import BacksolveOptimizer
from opm_backsolve.utils.trace import AuditTrailLogger, NullTraceLogger, TraceEntry
from opm_backsolve.utils.types import BacksolveRequest


def test_entries_recorded_in_order():
    trace = AuditTrailLogger()
    trace.step("Start", value=1)
    trace.debug("Newton-Raphson", "Iterating", iteration=3)
    trace.warning("Backsolve", "Slow")

    assert trace.entries == [
        TraceEntry("step", "Step", "Step 1: Start", {"value": 1}),
        TraceEntry("debug", "Newton-Raphson", "Iterating", {"iteration": 3}),
        TraceEntry("warning", "Backsolve", "Slow", {}),
    ]


def test_step_counter_and_summary():
    trace = AuditTrailLogger()
    trace.step("one")
    trace.step("two")
    trace.info("OPM Engine", "done")
    trace.error("OPM Engine", "bad")

    assert trace.steps_taken == 2
    assert trace.summary() == {"step": 2, "info": 1, "error": 1}


def test_recording_can_be_disabled():
    trace = AuditTrailLogger(record=False)
    trace.step("not kept")
    assert trace.entries == []
    assert trace.steps_taken == 1


def test_events_forwarded_to_structlog():
    trace = AuditTrailLogger(name="request-42")
    with structlog.testing.capture_logs() as logs:
        trace.debug("Newton-Raphson", "Iteration 1", x="10")

    assert logs == [
        {
            "event": "newton_raphson",
            "log_level": "debug",
            "trail": "request-42",
            "detail": "Iteration 1",
            "x": "10",
        }
    ]


def test_null_logger_accepts_everything():
    trace = NullTraceLogger()
    trace.step("anything", a=1)
    trace.debug("c", "m")
    trace.info("c", "m")
    trace.warning("c", "m")
    trace.error("c", "m", b=2)


def test_logger_choice_does_not_change_results(opm_params, common_only_breakpoints):
    request = BacksolveRequest(
        target_fmv=7.5,
        security_class="common",
        params=opm_params,
        breakpoints=common_only_breakpoints,
        total_shares=2_000_000.0,
    )
    silent = BacksolveOptimizer(NullTraceLogger()).backsolve(request)
    audited = BacksolveOptimizer(AuditTrailLogger()).backsolve(request)

    assert silent.enterprise_value == audited.enterprise_value
    assert silent.error == audited.error
    assert silent.metadata.methods_attempted == audited.metadata.methods_attempted
