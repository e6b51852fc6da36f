from receipt_intelligence.config import AiSettings


def test_defaults():
    s = AiSettings.from_env({})
    assert s.enabled is False
    assert s.provider == "openai"
    assert s.model == "gpt-4o-mini"
    assert s.base_url == "https://api.openai.com/v1"
    assert (s.timeout_seconds, s.max_output_tokens) == (45, 2600)


def test_from_env_parses_and_clamps():
    s = AiSettings.from_env(
        {
            "RECEIPTS_AI_ENABLED": "Yes",
            "RECEIPTS_AI_PROVIDER": " OpenAI ",
            "OPENAI_API_KEY": " sk-abc ",
            "RECEIPTS_AI_MODEL": "gpt-4.1-mini",
            "OPENAI_BASE_URL": "https://proxy.local/v1/",
            "RECEIPTS_AI_TIMEOUT_SECONDS": "1",
            "RECEIPTS_AI_MAX_OUTPUT_TOKENS": "999999",
        }
    )
    assert s.enabled is True
    assert s.provider == "openai"
    assert s.api_key == "sk-abc"
    assert s.model == "gpt-4.1-mini"
    assert s.base_url == "https://proxy.local/v1"
    assert s.timeout_seconds == 5
    assert s.max_output_tokens == 8000


def test_garbage_numbers_fall_back_to_defaults():
    s = AiSettings.from_env({"RECEIPTS_AI_TIMEOUT_SECONDS": "soon", "RECEIPTS_AI_MAX_OUTPUT_TOKENS": "12"})
    assert s.timeout_seconds == 45
    assert s.max_output_tokens == 800
