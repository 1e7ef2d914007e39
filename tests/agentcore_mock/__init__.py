"""AgentCore control-plane fake for integration testing.

Provides an in-memory implementation of the remote resource API so the
provisioner, the deletion engine and the cleanup routines can be tested
without cloud connectivity.

Key Features:
- In-memory resources per type, with parent scoping for child resources
- Scripted status sequences for readiness polling
- Error injection per operation and resource
- Never-ending pagination for termination tests
- A recording sleeper that never waits

Usage:
    from agentcore_mock import FakeResourceAPI, FakeSleeper

    api = FakeResourceAPI()
    sleeper = FakeSleeper()
    provisioner = ResourceProvisioner(api, sleep=sleeper)
"""

from .api import SETTLED_STATUS, FakeResourceAPI, InjectedError
from .clock import FakeSleeper

__all__ = [
    "SETTLED_STATUS",
    "FakeResourceAPI",
    "FakeSleeper",
    "InjectedError",
]
