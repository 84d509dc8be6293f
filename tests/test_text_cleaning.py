from __future__ import annotations

import re

import pytest

from lotl.controller.apps.aistudio import AiStudioAdapter
from lotl.controller.apps.chatgpt import ChatGptAdapter
from lotl.controller.text_cleaning import clean_text, is_chrome_line, is_disqualified

AISTUDIO_CHROME = AiStudioAdapter().chrome_regexes()


def test_strips_chrome_lines_citations_and_role_prefix() -> None:
    raw = "Model: The capital is Paris [1].\nthumb_up\nthumb_down\ncontent_copy\n\nIt has 2.1M people [2, 3].\n3.2s"
    assert clean_text(raw, extra_chrome=AISTUDIO_CHROME) == "The capital is Paris.\nIt has 2.1M people."


def test_collapses_whitespace_and_adjacent_duplicates() -> None:
    raw = "  Hello    world  \nHello world\n\n\nsecond   line\r\nsecond line"
    assert clean_text(raw) == "Hello world\nsecond line"


def test_keeps_indexing_syntax_that_looks_like_a_citation() -> None:
    assert clean_text("Use arr[1] and f(x)[0].") == "Use arr[1] and f(x)[0]."


def test_role_prefix_only_removed_from_first_line() -> None:
    assert clean_text("ChatGPT said:\nAnswer\nmodel: keep") == "Answer\nmodel: keep"


def test_extra_chrome_patterns_are_full_line_matches() -> None:
    extra = [re.compile(r"run settings", re.IGNORECASE)]
    assert clean_text("Run settings\nRun settings are useful", extra_chrome=extra) == "Run settings are useful"


def test_empty_input() -> None:
    assert clean_text(None) == ""
    assert clean_text("more_horiz\nmore_vert\n") == ""
    assert clean_text("Edit\nHelp\n2.4s", extra_chrome=AISTUDIO_CHROME) == ""


def test_platform_labels_are_not_default_chrome() -> None:
    assert clean_text("Share\nEdit this file first") == "Share\nEdit this file first"
    assert clean_text("Share\nEdit this file first", extra_chrome=AISTUDIO_CHROME) == "Edit this file first"


@pytest.mark.parametrize("reply", ["Help", "Share", "User", "Model", "Edit", "Sources", "12:30", "3s"])
def test_a_sole_label_like_line_is_the_reply(reply: str) -> None:
    assert clean_text(reply) == reply
    assert clean_text(reply, extra_chrome=AISTUDIO_CHROME) == reply
    assert clean_text(f"  {reply}  \n", extra_chrome=ChatGptAdapter().chrome_regexes()) == reply


@pytest.mark.parametrize(
    "raw",
    [
        "Model:\nModel: nested label\nthumb_up",
        "Answer [1]\nAnswer\n  \nAnswer [2]",
        "Sources\nYou said:\nhi\n12:30 PM\nresult",
        "a  [1][2]\n\n\tb",
        "Help",
    ],
)
def test_cleaning_is_idempotent(raw: str) -> None:
    once = clean_text(raw, extra_chrome=AISTUDIO_CHROME)
    assert clean_text(once, extra_chrome=AISTUDIO_CHROME) == once


def test_chrome_and_disqualify_predicates() -> None:
    assert is_chrome_line("  thumb_up ")
    assert not is_chrome_line("0.8s")
    assert is_chrome_line("0.8s", extra_chrome=AISTUDIO_CHROME)
    assert not is_chrome_line("The answer is 42")
    assert is_disqualified("Thoughts (experimental)")
    assert is_disqualified("Thinking...")
    assert not is_disqualified("Thinking about it, the answer is 4.")
