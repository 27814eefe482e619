"""Test parsing of optional config values."""

from flynt.config import _optional_float, _optional_int
from flynt.scheduler import SchedulerConfig
from flynt.models import TaskNode


def test_optional_int():
    assert _optional_int(9) == 9
    assert _optional_int("8") == 8
    for disabled in (None, "", "none", "None", " off ", 0, "0"):
        assert _optional_int(disabled) is None


def test_optional_float():
    assert _optional_float("2.5") == 2.5
    for disabled in (None, "", "none", 0, "-1"):
        assert _optional_float(disabled) is None


def test_disabled_threshold_turns_off_gates():
    config = SchedulerConfig(approval_threshold=_optional_int("none"), task_delay=0)
    assert not config.needs_approval(TaskNode(id="a", priority=10))
