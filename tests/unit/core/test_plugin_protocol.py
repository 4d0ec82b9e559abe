from revenium_anthropic.core.types import Plugin
from revenium_anthropic.log_adapters import DefaultLogAdapter, LogAdapter
from revenium_anthropic.providers import LLMProviderPlugin
from revenium_anthropic.providers.impl.anthropic_provider import AnthropicProviderPlugin
from revenium_anthropic.providers.impl.bedrock_provider import BedrockProviderPlugin


def test_provider_plugins_satisfy_protocols():
    for plugin in (AnthropicProviderPlugin(), BedrockProviderPlugin()):
        assert isinstance(plugin, Plugin)
        assert isinstance(plugin, LLMProviderPlugin)
        assert plugin.plugin_id


def test_log_adapter_satisfies_protocol():
    adapter = DefaultLogAdapter()
    assert isinstance(adapter, LogAdapter)
    assert adapter.plugin_id == "default_log_adapter_v1"


def test_plugin_ids_are_distinct():
    ids = {AnthropicProviderPlugin.plugin_id, BedrockProviderPlugin.plugin_id, DefaultLogAdapter.plugin_id}
    assert len(ids) == 3
