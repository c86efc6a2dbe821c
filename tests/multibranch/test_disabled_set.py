"""
Tests for the disabled-set tracker and the enable/disable cascade.

Disabling a project and enabling it again must restore exactly the set of
children that were enabled before.
"""

from unittest.mock import MagicMock

from multibranch.disabled_set import DisabledSetTracker, apply_cascade
from multibranch.models import Child, JobConfig
from multibranch.registry import ChildRegistry


def make_registry(**states):
    """Registry of children keyed by name; True means the child is disabled."""
    registry = ChildRegistry()
    for name, disabled in states.items():
        registry.put(name, Child(encoded_name=name, config=JobConfig(disabled=disabled)))
    return registry


def state_backend():
    """Mock backend that applies set_enabled to the child config."""
    backend = MagicMock()

    def set_enabled(child, enabled):
        child.config.disabled = not enabled

    backend.set_enabled.side_effect = set_enabled
    return backend


def enabled_names(registry):
    return {child.encoded_name for child in registry if not child.disabled}


class TestCascade:
    """Test suite for apply_cascade()."""

    def test_disable_then_enable_restores_enabled_set(self):
        registry = make_registry(main=False, feature=True, develop=False)
        backend = state_backend()
        tracker = DisabledSetTracker()
        before = enabled_names(registry)

        apply_cascade(registry, backend, tracker, disable=True)
        assert enabled_names(registry) == set()
        assert tracker.names() == ["feature"]

        apply_cascade(registry, backend, tracker, disable=False)
        assert enabled_names(registry) == before
        assert tracker.is_empty()

    def test_repeated_disable_does_not_capture_cascade_disabled_children(self):
        """A second disable sees every child disabled; the set must not grow."""
        registry = make_registry(main=False, feature=True)
        backend = state_backend()
        tracker = DisabledSetTracker()

        apply_cascade(registry, backend, tracker, disable=True)
        apply_cascade(registry, backend, tracker, disable=True)

        assert tracker.names() == ["feature"]

    def test_enable_skips_tracked_children(self):
        registry = make_registry(main=True, feature=True)
        backend = state_backend()
        tracker = DisabledSetTracker(["feature"])

        apply_cascade(registry, backend, tracker, disable=False)

        assert not registry.get("main").disabled
        assert registry.get("feature").disabled
        backend.set_enabled.assert_called_once_with(registry.get("main"), True)

    def test_failing_child_does_not_stop_cascade(self):
        registry = make_registry(a=False, b=False, c=False)
        backend = state_backend()
        original = backend.set_enabled.side_effect

        def set_enabled(child, enabled):
            if child.encoded_name == "b":
                raise RuntimeError("backend down")
            original(child, enabled)

        backend.set_enabled.side_effect = set_enabled

        errors = apply_cascade(registry, backend, DisabledSetTracker(), disable=True)

        assert [e.child_name for e in errors] == ["b"]
        assert errors[0].operation == "disable"
        assert registry.get("a").disabled
        assert registry.get("c").disabled


class TestDisabledSetTracker:
    """Test suite for DisabledSetTracker."""

    def test_migrate_names_encodes_raw_branch_names(self):
        tracker = DisabledSetTracker(["feature/x", "main", "gone"])

        changed = tracker.migrate_names(["feature%2Fx", "main"])

        assert changed
        assert tracker.names() == ["feature%2Fx", "main"]

    def test_migrate_names_without_changes(self):
        tracker = DisabledSetTracker(["main"])
        assert tracker.migrate_names(["main", "develop"]) is False
