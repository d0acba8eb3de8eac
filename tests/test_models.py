"""
Tests for resource models, accounting records and the reader/writer lock.
"""

import os
import sys
import threading
import time

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from accountant.exceptions import FeedDecodeError, RecordBuildError
from accountant.iptables.chains import ChainType
from accountant.iptables.models import CountType, build_record
from accountant.utils.rwlock import ReadWriteLock
from accountant.watch.models import (
    ResourceKind,
    Update,
    UpdateAction,
    WorkloadIdentity,
    normalize_ip,
)

from conftest import make_workload


# ===========================================================================
# Workload Model Tests
# ===========================================================================

class TestWorkloadIdentity:
    """Tests for the workload model."""

    def test_normalize_ip(self):
        assert normalize_ip("10.0.0.1/32") == "10.0.0.1"
        assert normalize_ip("10.0.0.0/24") == "10.0.0.0/24"
        assert normalize_ip("fd00::1/128") == "fd00::1/128"

    def test_ip_list_sorted(self):
        workload = make_workload(ip_networks=("10.0.0.9/32", "10.0.0.10/32"))
        assert workload.ip_list == "10.0.0.10,10.0.0.9"

    def test_hashable(self):
        assert len({make_workload(), make_workload()}) == 1

    def test_from_dict_missing_fields(self):
        workload = WorkloadIdentity.from_dict("k", {"pod": "foo"})
        assert workload.app_label == ""
        assert workload.ip_networks == frozenset()
        assert workload.node == ""

    def test_from_dict_rejects_wrong_types(self):
        with pytest.raises(FeedDecodeError):
            WorkloadIdentity.from_dict("k", {"pod": "foo", "labels": {"app": 7}})
        with pytest.raises(FeedDecodeError):
            WorkloadIdentity.from_dict("k", {"pod": "foo", "ipNetworks": "10.0.0.1/32"})

    def test_from_dict_null_fields_are_empty(self):
        workload = WorkloadIdentity.from_dict("k", {"pod": "foo", "node": None, "labels": None})
        assert workload.node == ""
        assert workload.app_label == ""


class TestUpdate:
    """Tests for feed updates."""

    def test_upsert_workload(self):
        workload = make_workload()
        update = Update.upsert_workload(workload)
        assert update.kind is ResourceKind.WORKLOAD
        assert update.action is UpdateAction.UPSERT
        assert update.key == workload.key

    def test_policy_value(self):
        assert Update.upsert_policy("default.db").value == "default.db"
        assert Update.upsert_policy("default.db", "db").value == "db"
        assert Update.delete_policy("default.db").value is None


# ===========================================================================
# Accounting Record Tests
# ===========================================================================

class TestBuildRecord:
    """Tests for record construction."""

    def test_drop_record(self):
        record = build_record(make_workload(), CountType.DROP, ChainType.FROM_WORKLOAD, 2, "DROP")
        assert record.pod_name == "foo"
        assert record.pod_ip == "127.0.0.1"
        assert record.target == "DROP"

    def test_drop_needs_drop_target(self):
        with pytest.raises(RecordBuildError):
            build_record(make_workload(), CountType.DROP, ChainType.FROM_WORKLOAD, 2, "RETURN")

    def test_accept_any_target(self):
        record = build_record(make_workload(), CountType.ACCEPT, ChainType.TO_WORKLOAD, 3, "cali-pi-x")
        assert record.count_type is CountType.ACCEPT


# ===========================================================================
# ReadWriteLock Tests
# ===========================================================================

class TestReadWriteLock:
    """Tests for the reader/writer lock."""

    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2, timeout=5.0)

        def reader():
            with lock.read_locked():
                inside.wait()

        threads = [threading.Thread(target=reader, daemon=True) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5.0)
        assert not any(t.is_alive() for t in threads)

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []

        lock.acquire_write()

        def reader():
            with lock.read_locked():
                events.append("read")

        thread = threading.Thread(target=reader, daemon=True)
        thread.start()
        time.sleep(0.05)
        events.append("write-done")
        lock.release_write()
        thread.join(timeout=5.0)

        assert events == ["write-done", "read"]

    def test_waiting_writer_blocks_new_readers(self):
        lock = ReadWriteLock()
        events = []
        lock.acquire_read()

        def writer():
            with lock.write_locked():
                events.append("write")

        def late_reader():
            with lock.read_locked():
                events.append("read")

        writer_thread = threading.Thread(target=writer, daemon=True)
        writer_thread.start()
        time.sleep(0.05)
        reader_thread = threading.Thread(target=late_reader, daemon=True)
        reader_thread.start()
        time.sleep(0.05)
        assert events == []

        lock.release_read()
        writer_thread.join(timeout=5.0)
        reader_thread.join(timeout=5.0)
        assert events == ["write", "read"]
