"""
Tests for the Resource Cache.
"""

import os
import sys
import threading
import time

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from accountant.iptables.chains import policy_chain_names
from accountant.watch.cache import ResourceCache
from accountant.watch.models import SyncStatus, Update

from conftest import NODE_NAME, make_workload


# ===========================================================================
# Workload Tests
# ===========================================================================

class TestWorkloads:
    """Tests for workload updates."""

    def test_local_workload_added(self, cache):
        workload = make_workload()
        cache.on_updates([Update.upsert_workload(workload)])
        assert cache.list_workloads() == {workload}
        assert len(cache) == 1

    def test_remote_workload_ignored(self, cache):
        cache.on_updates([Update.upsert_workload(make_workload(node="node-2"))])
        assert cache.list_workloads() == set()

    def test_upsert_replaces(self, cache):
        cache.on_updates([Update.upsert_workload(make_workload(app_label="old"))])
        updated = make_workload(app_label="new")
        cache.on_updates([Update.upsert_workload(updated)])
        assert cache.list_workloads() == {updated}

    def test_delete(self, cache):
        workload = make_workload()
        cache.on_updates([Update.upsert_workload(workload)])
        cache.on_updates([Update.delete_workload(workload.key)])
        assert cache.list_workloads() == set()

    def test_delete_unknown_is_noop(self, cache):
        workload = make_workload()
        cache.on_updates([Update.upsert_workload(workload)])
        cache.on_updates([Update.delete_workload("k8s/default/other/eth0")])
        assert cache.list_workloads() == {workload}

    def test_batch_applied_in_order(self, cache):
        first = make_workload(key="a", interface_name="cali1")
        second = make_workload(key="b", interface_name="cali2")
        cache.on_updates([
            Update.upsert_workload(first),
            Update.upsert_workload(second),
            Update.delete_workload("a"),
        ])
        assert cache.list_workloads() == {second}

    def test_snapshot_is_a_copy(self, cache):
        cache.on_updates([Update.upsert_workload(make_workload())])
        snapshot = cache.list_workloads()
        cache.on_updates([Update.delete_workload("k8s/default/foo/eth0")])
        assert len(snapshot) == 1


# ===========================================================================
# Policy Tests
# ===========================================================================

class TestPolicies:
    """Tests for policy updates."""

    def test_policy_stored_under_both_chains(self, cache):
        cache.on_updates([Update.upsert_policy("allow-dns")])
        inbound, outbound = policy_chain_names("allow-dns")
        assert cache.lookup_policy_name(inbound) == "allow-dns"
        assert cache.lookup_policy_name(outbound) == "allow-dns"
        assert cache.policy_chain_count == 2

    def test_policy_display_name(self, cache):
        cache.on_updates([Update.upsert_policy("default.allow-dns", "allow-dns")])
        inbound, _ = policy_chain_names("default.allow-dns")
        assert cache.lookup_policy_name(inbound) == "allow-dns"

    def test_hashed_chain_names(self, cache):
        name = "allow-traffic-from-frontend-to-backend"
        cache.on_updates([Update.upsert_policy(name)])
        inbound, outbound = policy_chain_names(name)
        assert len(inbound) == 28
        assert cache.lookup_policy_name(inbound) == name
        assert cache.lookup_policy_name(outbound) == name

    def test_policy_delete(self, cache):
        cache.on_updates([Update.upsert_policy("allow-dns")])
        cache.on_updates([Update.delete_policy("allow-dns")])
        inbound, outbound = policy_chain_names("allow-dns")
        assert cache.lookup_policy_name(inbound) == ""
        assert cache.lookup_policy_name(outbound) == ""
        assert cache.policy_chain_count == 0

    def test_unknown_chain(self, cache):
        assert cache.lookup_policy_name("cali-pi-unknown") == ""


# ===========================================================================
# Readiness Tests
# ===========================================================================

class TestReadiness:
    """Tests for the initial sync signal."""

    def test_not_ready_initially(self, cache):
        assert not cache.is_ready
        assert cache.wait_until_ready(timeout=0.01) is False

    def test_in_sync_makes_ready(self, cache):
        cache.on_status_updated(SyncStatus.IN_SYNC)
        assert cache.is_ready
        assert cache.wait_until_ready(timeout=0) is True

    def test_other_statuses_do_not(self, cache):
        cache.on_status_updated(SyncStatus.WAIT_FOR_DATASTORE)
        cache.on_status_updated(SyncStatus.RESYNC_IN_PROGRESS)
        assert not cache.is_ready

    def test_ready_is_permanent(self, cache):
        cache.on_status_updated(SyncStatus.IN_SYNC)
        cache.on_status_updated(SyncStatus.RESYNC_IN_PROGRESS)
        assert cache.is_ready

    def test_waiter_released(self, cache):
        released = threading.Event()

        def waiter():
            cache.wait_until_ready()
            released.set()

        thread = threading.Thread(target=waiter, daemon=True)
        thread.start()
        time.sleep(0.05)
        assert not released.is_set()

        cache.on_status_updated(SyncStatus.IN_SYNC)
        assert released.wait(timeout=2.0)
        thread.join(timeout=2.0)


# ===========================================================================
# Concurrency Tests
# ===========================================================================

class TestConcurrency:
    """Readers and the feed writer run concurrently."""

    def test_concurrent_updates_and_reads(self):
        cache = ResourceCache(NODE_NAME)
        errors = []
        stop = threading.Event()

        def writer(offset):
            for i in range(200):
                workload = make_workload(key=f"w{offset}-{i}", interface_name=f"cali{offset}{i}")
                cache.on_updates([Update.upsert_workload(workload)])
                cache.on_updates([Update.upsert_policy(f"p{offset}-{i}")])
                if i % 2:
                    cache.on_updates([Update.delete_workload(workload.key)])

        def reader():
            while not stop.is_set():
                try:
                    for workload in cache.list_workloads():
                        assert workload.node == NODE_NAME
                    cache.lookup_policy_name("cali-pi-default/p0-1")
                except Exception as e:
                    errors.append(e)
                    return

        readers = [threading.Thread(target=reader, daemon=True) for _ in range(3)]
        writers = [threading.Thread(target=writer, args=(n,), daemon=True) for n in range(2)]
        for t in readers + writers:
            t.start()
        for t in writers:
            t.join(timeout=10.0)
        stop.set()
        for t in readers:
            t.join(timeout=10.0)

        assert errors == []
        assert len(cache) == 200
        assert cache.policy_chain_count == 800
