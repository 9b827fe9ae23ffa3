import pytest

from botguard.client.extractors import (FormTimingAnalyzer, MouseLinearityAnalyzer, MouseSample,
                                        ScrollCadenceAnalyzer, compute_linearity, compute_risk_score)


def line(n, f):
    return [MouseSample(float(i), float(f(i)), i) for i in range(n)]


@pytest.fixture
def emitted():
    return []


@pytest.fixture
def emit(emitted):
    return lambda t, payload: emitted.append((t, payload))


def test_straight_path_is_fully_linear():
    assert compute_linearity(line(50, lambda x: 2 * x + 1)) == 1.0


def test_scattered_path_scores_zero():
    assert compute_linearity(line(50, lambda x: 0 if x % 2 == 0 else 200)) == 0.0


def test_too_few_samples():
    assert compute_linearity(line(5, lambda x: x)) == 0.0
    assert compute_linearity([]) == 0.0


def test_vertical_path_uses_unit_denominator():
    samples = [MouseSample(7.0, float(i), i) for i in range(50)]
    # slope collapses to 0; residuals around the mean of the last 40 y values average 10px
    assert compute_linearity(samples) == 0.75


def test_mouse_summary_every_fiftieth_sample(emit, emitted):
    analyzer = MouseLinearityAnalyzer(emit, clock=lambda: 0)
    for i in range(120):
        analyzer.on_move(i, i)
    assert [p["count"] for t, p in emitted] == [50, 100]
    assert all(t == "mouse_summary" for t, _ in emitted)
    assert emitted[0][1]["linearity"] == 1.0


def test_fast_scroll_needs_four_fast_deltas(emit, emitted):
    analyzer = ScrollCadenceAnalyzer(emit, clock=lambda: 0)
    for ts in (0, 10, 20, 30):
        analyzer.on_scroll(ts)
    assert emitted == []
    analyzer.on_scroll(40)
    assert emitted == [("fast_scroll", {"fastCount": 4})]


def test_slow_scrolling_is_quiet(emit, emitted):
    analyzer = ScrollCadenceAnalyzer(emit, clock=lambda: 0)
    for i in range(20):
        analyzer.on_scroll(i * 100)
    assert emitted == []


def test_scroll_window_slides(emit, emitted):
    analyzer = ScrollCadenceAnalyzer(emit, clock=lambda: 0)
    ts = 0
    for _ in range(4):
        ts += 10
        analyzer.on_scroll(ts)
    analyzer.on_scroll(ts + 10)
    assert len(emitted) == 1
    # eight slow deltas push the fast ones out of the window
    for _ in range(8):
        ts += 500
        analyzer.on_scroll(ts)
    emitted.clear()
    analyzer.on_scroll(ts + 500)
    assert emitted == []


def test_scroll_ring_is_bounded(emit):
    analyzer = ScrollCadenceAnalyzer(emit, clock=lambda: 0)
    for i in range(300):
        analyzer.on_scroll(i * 100)
    assert len(analyzer.deltas) == 200


def test_fast_form_submit_emits_flag(emit, emitted):
    forms = FormTimingAnalyzer(emit, clock=lambda: 0, page_loaded_at=0)
    forms.on_input("login", timestamp=1000)
    forms.on_input("login", timestamp=1200)
    forms.on_submit("login", action="/submit", timestamp=1500)
    assert emitted == [
        ("form_submit", {"action": "/submit", "timeToSubmitMs": 500}),
        ("fast_form_submit_flag", {"timeToSubmit": 500}),
    ]


def test_slow_form_submit_has_no_flag(emit, emitted):
    forms = FormTimingAnalyzer(emit, clock=lambda: 0, page_loaded_at=0)
    forms.on_input("login", timestamp=1000)
    forms.on_submit("login", timestamp=5000)
    assert emitted == [("form_submit", {"action": None, "timeToSubmitMs": 4000})]


def test_submit_without_input_measures_from_page_load(emit, emitted):
    forms = FormTimingAnalyzer(emit, clock=lambda: 0, page_loaded_at=100)
    assert forms.on_submit("search", timestamp=300) == 200
    assert emitted[-1] == ("fast_form_submit_flag", {"timeToSubmit": 200})


def test_form_timers_are_removable(emit):
    forms = FormTimingAnalyzer(emit, clock=lambda: 0, page_loaded_at=0)
    forms.on_input("a", timestamp=1)
    forms.on_input("b", timestamp=1)
    assert len(forms) == 2
    assert forms.forget("a") is True
    assert forms.forget("a") is False
    forms.clear()
    assert len(forms) == 0


def test_risk_score(emit):
    mouse = MouseLinearityAnalyzer(emit, clock=lambda: 0)
    scroll = ScrollCadenceAnalyzer(emit, clock=lambda: 0)
    assert compute_risk_score(mouse, scroll) == 30

    for ts in range(0, 60, 10):
        scroll.on_scroll(ts)
    assert compute_risk_score(mouse, scroll) == 60

    for i in range(50):
        mouse.on_move(i, i)
    # fully linear path subtracts 40 and enough samples drops the +20
    assert compute_risk_score(mouse, scroll) == 0
