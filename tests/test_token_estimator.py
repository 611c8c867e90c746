"""Tests for the character-based token estimator."""
from chat_gateway.finops import estimate_message_tokens, estimate_tokens


def test_empty_text_is_free():
    assert estimate_tokens("") == 0


def test_latin_text_uses_four_chars_per_token():
    assert estimate_tokens("abcd" * 10) == 10
    assert estimate_tokens("abcde") == 2


def test_hangul_counts_denser_than_latin():
    korean = "안녕하세요"  # five syllables

    assert estimate_tokens(korean) == 2
    assert estimate_tokens(korean * 2) == 4
    assert estimate_tokens(korean * 4) > estimate_tokens("hello" * 4)


def test_mixed_scripts_round_each_bucket_up():
    # 5 Hangul chars -> ceil(2.0) = 2, 6 Latin chars -> ceil(1.5) = 2
    assert estimate_tokens("안녕하세요 hello") == 4


def test_message_estimate_adds_overhead_and_images():
    messages = [
        {"role": "system", "content": "abcd"},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "abcdabcd"},
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
            ],
        },
    ]

    assert estimate_message_tokens(messages) == (1 + 4) + (2 + 1085 + 4)
