# tests/test_parse.py
import logging

from gpu_metrics.collector.parsers import parse_line, parse_output


def test_full_row():
    m = parse_line("0, 45, 2048, 8192, 65, 120.5")
    assert m.index == 0
    assert m.utilization_percent == 45
    assert (m.memory_used_mb, m.memory_total_mb) == (2048, 8192)
    assert m.temperature_celsius == 65
    assert m.power_draw_watts == 120  # truncated, not rounded


def test_power_truncates_toward_zero():
    assert parse_line("0, 1, 1, 1, 40, 99.99").power_draw_watts == 99
    assert parse_line("0, 1, 1, 1, 40, 250").power_draw_watts == 250


def test_not_available_optionals_stay_zero():
    m = parse_line("1, 10, 100, 200, N/A, N/A")
    assert m.index == 1
    assert m.temperature_celsius == 0
    assert m.power_draw_watts == 0


def test_blank_optionals_stay_zero():
    m = parse_line("2, 10, 100, 200,  ,  ")
    assert m.temperature_celsius == 0
    assert m.power_draw_watts == 0


def test_missing_optional_columns():
    m = parse_line("3, 50, 10, 20")
    assert m.index == 3 and m.utilization_percent == 50
    assert m.temperature_celsius == 0 and m.power_draw_watts == 0

    m = parse_line("3, 50, 10, 20, 71")
    assert m.temperature_celsius == 71 and m.power_draw_watts == 0


def test_unparsable_power_is_silent_zero():
    assert parse_line("0, 1, 1, 1, 40, [Unknown Error]").power_draw_watts == 0
    assert parse_line("0, 1, 1, 1, 40, inf").power_draw_watts == 0


def test_too_few_fields_is_skipped(caplog):
    with caplog.at_level(logging.WARNING):
        assert parse_line("0, 45, 2048") is None
    assert "unexpected nvidia-smi output format" in caplog.text


def test_bad_index_skips_line():
    assert parse_line("GPU-0, 45, 2048, 8192") is None


def test_bad_required_fields_default_to_zero():
    m = parse_line("4, N/A, abc, 8192, 60, 100.0")
    assert m is not None
    assert m.index == 4
    assert m.utilization_percent == 0
    assert m.memory_used_mb == 0
    assert m.memory_total_mb == 8192


def test_out_of_range_values_pass_through():
    m = parse_line("0, 250, 10, 5, -5, 70000.7")
    assert m.utilization_percent == 250
    assert m.memory_used_mb > m.memory_total_mb
    assert m.temperature_celsius == -5
    assert m.power_draw_watts == 70000


def test_output_keeps_order_and_skips_bad_lines():
    text = "\n  1, 10, 100, 200, 50, 75.2\n0, 45\n\n0, 20, 300, 400, N/A, N/A\n"
    metrics = parse_output(text)
    assert [m.index for m in metrics] == [1, 0]
    assert metrics[0].power_draw_watts == 75
    assert metrics[1].memory_total_mb == 400


def test_empty_output():
    assert parse_output("") == []
    assert parse_output("   \n ") == []
