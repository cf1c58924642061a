"""Property tests for behavior adaptation and risk scoring.

Validates clamping of every adaptation field, escalation on repeated
critical or high signals, and that risk is bounded, monotonic in added
signals, and blind to signals older than five minutes.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import make_signal, severities, signal_batches
from stealth_router.detection.behavior_adaptor import BehaviorAdaptor, merge_adaptations
from stealth_router.models.detection import Severity


@settings(max_examples=100)
@given(batch=signal_batches)
def test_adaptation_is_clamped(batch) -> None:
    adaptation = BehaviorAdaptor().adapt_behavior(batch)

    assert 0.1 <= adaptation.speed_reduction <= 1.0
    assert 1.0 <= adaptation.pause_increase <= 5.0
    assert 0.0 <= adaptation.randomization_factor <= 1.0
    assert 0 <= adaptation.backoff_duration_ms <= 1_800_000


@settings(max_examples=100)
@given(batch=signal_batches)
def test_critical_signal_forces_switch(batch) -> None:
    batch = batch + [make_signal(Severity.CRITICAL)]
    adaptation = BehaviorAdaptor().adapt_behavior(batch)

    assert adaptation.switch_persona is True
    assert adaptation.backoff_duration_ms >= 300_000


@settings(max_examples=100)
@given(
    extra=signal_batches,
    criticals=st.integers(min_value=2, max_value=5),
)
def test_repeated_criticals_escalate(extra, criticals) -> None:
    batch = [make_signal(Severity.CRITICAL)] * criticals + extra
    adaptation = BehaviorAdaptor().adapt_behavior(batch)

    assert adaptation.switch_persona is True
    assert adaptation.backoff_duration_ms >= 600_000


@settings(max_examples=100)
@given(batch=signal_batches)
def test_empty_or_mild_batches_never_switch(batch) -> None:
    mild = [s for s in batch if s.severity in (Severity.LOW, Severity.MEDIUM)]
    assert BehaviorAdaptor().adapt_behavior(mild).switch_persona is False


@settings(max_examples=100)
@given(batch=signal_batches, captcha=st.booleans(), load=st.floats(min_value=0, max_value=60_000))
def test_risk_is_bounded(batch, captcha, load) -> None:
    risk = BehaviorAdaptor().evaluate_risk(batch, captcha_detected=captcha, load_time_ms=load)
    assert 0.0 <= risk <= 100.0


@settings(max_examples=100)
@given(batch=signal_batches, severity=severities, captcha=st.booleans())
def test_risk_is_monotonic_in_signals(batch, severity, captcha) -> None:
    adaptor = BehaviorAdaptor()
    now = datetime.now(timezone.utc)
    base = adaptor.evaluate_risk(batch, captcha_detected=captcha, now=now)
    more = adaptor.evaluate_risk(batch + [make_signal(severity, timestamp=now)], captcha_detected=captcha, now=now)
    assert more >= base


@settings(max_examples=100)
@given(
    severities_list=st.lists(severities, min_size=1, max_size=10),
    age_minutes=st.integers(min_value=6, max_value=120),
)
def test_stale_signals_carry_no_risk(severities_list, age_minutes) -> None:
    now = datetime.now(timezone.utc)
    stale = [make_signal(s, timestamp=now - timedelta(minutes=age_minutes)) for s in severities_list]
    assert BehaviorAdaptor().evaluate_risk(stale, captcha_detected=False, now=now) == 0.0


@settings(max_examples=100)
@given(first=signal_batches, second=signal_batches)
def test_merge_is_at_least_as_cautious(first, second) -> None:
    adaptor = BehaviorAdaptor()
    a = adaptor.adapt_behavior(first)
    b = adaptor.adapt_behavior(second)
    merged = merge_adaptations(a, b)

    for part in (a, b):
        assert merged.speed_reduction <= part.speed_reduction
        assert merged.pause_increase >= part.pause_increase
        assert merged.randomization_factor >= part.randomization_factor
        assert merged.backoff_duration_ms >= part.backoff_duration_ms
        assert merged.switch_persona >= part.switch_persona
