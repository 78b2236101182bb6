from __future__ import annotations

import re
from pathlib import Path

import pytest
from loguru import logger

from bastion.aws.ami import locate_image
from bastion.observability.logging import LogConfig, _default_component, setup_logging, teardown_logging

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestDefaultComponent:
    def test_bound_component_kept(self):
        record = {"name": "bastion.aws.nacl_rule", "extra": {"component": "nacl-rules"}}
        _default_component(record)
        assert record["extra"] == {"component": "nacl-rules"}

    def test_module_name_when_unbound(self):
        record = {"name": "bastion.aws.nacl_rule", "extra": {}}
        _default_component(record)
        assert record["extra"] == {"component": "nacl_rule"}


class TestSetupLogging:
    def test_file_sink_receives_library_logs(self, tmp_path: Path, ec2):
        log_file = tmp_path / "logs" / "bastion.log"
        handler_ids = setup_logging(LogConfig(file=str(log_file)))
        try:
            locate_image(ec2, ["amazon"], {})
        finally:
            teardown_logging(handler_ids)

        content = log_file.read_text()
        assert re.search(r" ami +Resolved AMI ami-7172b611 .* \(bastion\.aws\.ami:\d+\)", content)

    def test_other_loggers_filtered_out(self, tmp_path: Path):
        log_file = tmp_path / "b.log"
        handler_ids = setup_logging(LogConfig(file=str(log_file)))
        try:
            logger.info("not from bastion")
        finally:
            teardown_logging(handler_ids)

        assert "not from bastion" not in log_file.read_text()

    def test_console_and_file_handlers(self, tmp_path: Path):
        handler_ids = setup_logging(LogConfig(file=str(tmp_path / "b.log"), console=True))
        teardown_logging(handler_ids)
        assert len(handler_ids) == 2

    def test_no_sinks(self):
        handler_ids = setup_logging(LogConfig(file=None))
        teardown_logging(handler_ids)
        assert handler_ids == []

    def test_disabled_after_teardown(self, tmp_path: Path, ec2):
        log_file = tmp_path / "b.log"
        handler_ids = setup_logging(LogConfig(file=str(log_file)))
        teardown_logging(handler_ids)

        sink: list[str] = []
        hid = logger.add(sink.append)
        try:
            locate_image(ec2, ["amazon"], {})
        finally:
            logger.remove(hid)
        assert sink == []
