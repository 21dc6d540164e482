# Tests Package
"""
Test suite for the SafeCall session core.

- unit/: Component-level tests
- integration/: Orchestrator and gateway flows
- tools/: Provider clients against mocked transports
"""
