"""
Pytest configuration and shared fixtures for Calico Accountant tests.

This module provides a realistic iptables-save counter dump, the workload
it belongs to, and fakes for the parts of the accountant that would
otherwise run iptables-save or read a live feed.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator, List, Optional

import pytest

# Add the parent directory to the path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from accountant.iptables.dump import CompletedDump, IptablesSave
from accountant.watch.cache import ResourceCache
from accountant.watch.models import SyncStatus, Update, WorkloadIdentity


NODE_NAME = "node-1"
INTERFACE = "cali5125b8e5d77"
INBOUND_CHAIN = "cali-pi-_hvIhg5e42MGXRa9paIF"
OUTBOUND_CHAIN = "cali-po-_hvIhg5e42MGXRa9paIF"

# Filter table of a node with one workload and one policy applied to it
SAMPLE_DUMP = """\
# Generated by iptables-save v1.8.4 on Mon Jan  6 10:00:00 2020
*filter
:cali-tw-cali5125b8e5d77 - [0:0]
:cali-fw-cali5125b8e5d77 - [0:0]
[0:0] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:OuV4ONPRxEzXLeFe" -m conntrack --ctstate RELATED,ESTABLISHED -j ACCEPT
[0:0] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:eJTvIhsT4VBx2eYR" -m conntrack --ctstate INVALID -j DROP
[12:720] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:HqDZuW76n3mdpCix" -j MARK --set-xmark 0x0/0x10000
[3:180] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:Zk6CbRlMMcKBWZg9" -m comment --comment "Start of policies" -j MARK --set-xmark 0x0/0x20000
[3:180] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:yWm8oY1YDuoYpkS6" -m mark --mark 0x0/0x20000 -j cali-pi-_hvIhg5e42MGXRa9paIF
[3:180] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:RnZHt9r_TDuk8NI7" -m comment --comment "Return if policy accepted" -m mark --mark 0x10000/0x10000 -j RETURN
[0:0] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:0HKmZy_mh8JT1Tl6" -m comment --comment "Drop if no policies passed packet" -m mark --mark 0x0/0x20000 -j DROP
[0:0] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:Z9Q29hxQp47qKVD4" -j cali-pri-kns.default
[0:0] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:TZFwnUkg2Qa27CXQ" -m comment --comment "Return if profile accepted" -m mark --mark 0x10000/0x10000 -j RETURN
[0:0] -A cali-tw-cali5125b8e5d77 -m comment --comment "cali:6b_y1gnlt2WO7muw" -m comment --comment "Drop if no profiles matched" -j DROP
[5:200] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:vFlDFrJ9Qkfz5bmD" -m conntrack --ctstate RELATED,ESTABLISHED -j ACCEPT
[0:0] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:PYEqgsq3qaoejnWB" -m conntrack --ctstate INVALID -j DROP
[2:164] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:RjO_YJSWr911DY6T" -j MARK --set-xmark 0x0/0x10000
[2:164] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:reCQdsaa0txrA5aZ" -m comment --comment "Start of policies" -j MARK --set-xmark 0x0/0x20000
[2:164] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:GB6NmH8AJXUChNx0" -m mark --mark 0x0/0x20000 -j cali-po-_hvIhg5e42MGXRa9paIF
[0:0] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:EAx49aLc--OzcnGb" -m comment --comment "Return if policy accepted" -m mark --mark 0x10000/0x10000 -j RETURN
[2:164] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:mFJHSWPsX6BjHV5u" -m comment --comment "Drop if no policies passed packet" -m mark --mark 0x0/0x20000 -j DROP
[0:0] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:3sdhKBP7w38yxwGG" -j cali-pro-kns.default
[0:0] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:emE9qPqe4hA5HBPo" -m comment --comment "Return if profile accepted" -m mark --mark 0x10000/0x10000 -j RETURN
[0:0] -A cali-fw-cali5125b8e5d77 -m comment --comment "cali:s2Jrc8hOvqYYH_jj" -m comment --comment "Drop if no profiles matched" -j DROP
COMMIT
# Completed on Mon Jan  6 10:00:00 2020
"""


def make_workload(
    key: str = "k8s/default/foo/eth0",
    pod: str = "foo",
    namespace: str = "default",
    app_label: str = "bar",
    interface_name: str = INTERFACE,
    ip_networks: tuple = ("127.0.0.1/32",),
    node: str = NODE_NAME,
) -> WorkloadIdentity:
    return WorkloadIdentity.create(
        key=key,
        pod=pod,
        namespace=namespace,
        app_label=app_label,
        interface_name=interface_name,
        ip_networks=ip_networks,
        node=node,
    )


class FakeIptablesSave(IptablesSave):
    """IptablesSave returning canned output instead of running a process."""

    def __init__(self, stdout: str = SAMPLE_DUMP, stderr: str = "", returncode: int = 0,
                 error: Optional[Exception] = None):
        super().__init__()
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.error = error
        self.calls = 0

    def capture(self) -> CompletedDump:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return CompletedDump(stdout=self.stdout, stderr=self.stderr, returncode=self.returncode)


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="accountant_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


# ===========================================================================
# Workload and Dump Fixtures
# ===========================================================================

@pytest.fixture
def workload() -> WorkloadIdentity:
    """The workload owning the sample dump's interface."""
    return make_workload()


@pytest.fixture
def interface_map(workload: WorkloadIdentity):
    return {workload.interface_name: workload}


@pytest.fixture
def sample_dump() -> str:
    return SAMPLE_DUMP


@pytest.fixture
def sample_lines() -> List[str]:
    return SAMPLE_DUMP.splitlines()


@pytest.fixture
def fake_dump() -> FakeIptablesSave:
    return FakeIptablesSave()


# ===========================================================================
# Cache Fixtures
# ===========================================================================

@pytest.fixture
def cache() -> ResourceCache:
    """An empty cache for NODE_NAME that has not completed its sync."""
    return ResourceCache(NODE_NAME)


@pytest.fixture
def ready_cache(cache: ResourceCache, workload: WorkloadIdentity) -> ResourceCache:
    """A synced cache holding the sample workload."""
    cache.on_updates([Update.upsert_workload(workload)])
    cache.on_status_updated(SyncStatus.IN_SYNC)
    return cache
