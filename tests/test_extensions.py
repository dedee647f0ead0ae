"""Unit tests for the extension registry."""

import pytest

from tkbridge.extensions import (
    AlreadyInitialized,
    AlreadyRegistered,
    EvalExtension,
    Extension,
    ExtensionError,
    ExtensionNotFound,
    ExtensionRegistry,
    default_registry,
)


class Recorder(Extension):
    def __init__(self):
        self.contexts = []

    def initialize(self, context):
        self.contexts.append(context)


class TestExtensionRegistry:
    """Tests for registration and initialization."""

    def test_initialize_once(self, bridge):
        reg = ExtensionRegistry()
        ext = Recorder()
        reg.register("recorder", ext)
        assert not reg.is_initialized("recorder")

        reg.initialize("recorder", bridge.extension_context)
        assert reg.is_initialized("recorder")
        with pytest.raises(AlreadyInitialized):
            reg.initialize("recorder", bridge.extension_context)
        assert len(ext.contexts) == 1

    def test_duplicate_registration(self):
        reg = ExtensionRegistry()
        reg.register("x", Recorder())
        with pytest.raises(AlreadyRegistered):
            reg.register("x", Recorder())

    def test_unknown_extension(self, bridge):
        with pytest.raises(ExtensionNotFound):
            ExtensionRegistry().initialize("missing", bridge.extension_context)

    def test_names_are_whitespace_normalized(self, bridge):
        reg = default_registry()
        reg.initialize("  eval ", bridge.extension_context)
        assert reg.is_initialized("eval")

    def test_failed_initialize_can_retry(self, bridge):
        class Flaky(Extension):
            attempts = 0

            def initialize(self, context):
                Flaky.attempts += 1
                if Flaky.attempts == 1:
                    raise ExtensionError("not yet")

        reg = ExtensionRegistry()
        reg.register("flaky", Flaky())
        with pytest.raises(ExtensionError):
            reg.initialize("flaky", bridge.extension_context)
        reg.initialize("flaky", bridge.extension_context)
        assert reg.is_initialized("flaky")


class TestEvalExtension:
    """Tests for the built-in eval extension."""

    def test_eval_after_initialize(self, bridge):
        bridge.initialize_extension("eval")
        ext = bridge.extensions.get("eval")
        assert ext.eval("set x 5") == "5"

    def test_eval_before_initialize(self):
        with pytest.raises(ExtensionError):
            EvalExtension().eval("set x 5")

    def test_context_registers_windows(self, bridge):
        w = bridge.extension_context.register_window(".custom")
        assert str(w) == ".custom"
        assert bridge.extension_context.register_window(".custom") is w
