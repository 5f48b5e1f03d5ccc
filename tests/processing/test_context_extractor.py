import pytest
from session_engine.logic.context_extractor import (
    ContextExtractor,
    are_urls_related,
    deduplicate_contexts,
    extract_domain,
    is_browser,
)
from session_engine.models import ExtractedContext

@pytest.fixture
def extractor():
    return ContextExtractor()

def test_document_path_wins_over_title(extractor):
    ctx = extractor.extract("Preview", "", document_path="/Users/me/report.pdf")
    assert ctx.kind == "file"
    assert ctx.value == "/Users/me/report.pdf"

    ctx = extractor.extract("Code", "main.py - proj - Visual Studio Code", document_path="/tmp/notes.md")
    assert ctx.value == "/tmp/notes.md"

def test_empty_title_has_no_context(extractor):
    assert extractor.extract("Notes", "") is None
    assert extractor.extract("Notes", None) is None

def test_vscode_title_with_project(extractor):
    ctx = extractor.extract("Code", "main.py - myproject - Visual Studio Code")
    assert ctx.kind == "file"
    assert ctx.value == "myproject/main.py"

def test_vscode_title_without_project(extractor):
    ctx = extractor.extract("Visual Studio Code", "README.md - Visual Studio Code")
    assert ctx.value == "README.md"

def test_editor_placeholder_titles_are_ignored(extractor):
    assert extractor.extract("Code", "Welcome - Visual Studio Code") is None
    assert extractor.extract("Cursor", "Settings - Cursor") is None

def test_cursor_title(extractor):
    ctx = extractor.extract("Cursor", "app.ts - webapp - Cursor")
    assert ctx.value == "webapp/app.ts"

def test_xcode_title(extractor):
    ctx = extractor.extract("Xcode", "AppDelegate.swift — MyApp")
    assert ctx.kind == "file"
    assert ctx.value == "MyApp/AppDelegate.swift"

def test_terminal_path(extractor):
    ctx = extractor.extract("Ghostty", "~/dev/lifelog")
    assert ctx.kind == "command"
    assert ctx.value == "~/dev/lifelog"

def test_terminal_command(extractor):
    ctx = extractor.extract("iTerm2", "npm run dev")
    assert ctx.value == "npm run dev"

def test_terminal_command_is_capped(extractor):
    ctx = extractor.extract("Terminal", "python " + "x" * 100)
    assert len(ctx.value) == 50

def test_bare_shell_title_is_rejected(extractor):
    assert extractor.extract("Terminal", "zsh") is None
    assert extractor.extract("Ghostty", "bash") is None

def test_figma_title(extractor):
    ctx = extractor.extract("Figma", "Landing page – Figma")
    assert ctx.kind == "document"
    assert ctx.value == "Landing page"

def test_adobe_zoom_annotation_is_stripped(extractor):
    ctx = extractor.extract("Adobe Photoshop 2024", "poster.psd @ 66.7% (Layer 1, RGB/8)")
    assert ctx.value == "poster.psd"

def test_slack_channel(extractor):
    ctx = extractor.extract("Slack", "#general - Acme - Slack")
    assert ctx.value == "#general"

def test_slack_direct_message(extractor):
    ctx = extractor.extract("Slack", "Jordan - Acme - Slack")
    assert ctx.value == "DM: Jordan"

def test_discord_channel(extractor):
    ctx = extractor.extract("Discord", "Gaming - #general")
    assert ctx.value == "Gaming/#general"

def test_github_url_is_repo_scoped(extractor):
    ctx = extractor.extract(
        "Firefox",
        "Fix parser by someone · Pull Request #12 · acme/widgets - Mozilla Firefox",
        url="https://github.com/acme/widgets/pull/12",
    )
    assert ctx.kind == "url"
    assert ctx.value == "github.com/acme/widgets"
    assert ctx.detail == "Fix parser by someone · Pull Request #12 · acme/widgets"

def test_stackoverflow_is_domain_only(extractor):
    title = "How do I merge two dictionaries? " * 5
    ctx = extractor.extract("Google Chrome", title, url="https://stackoverflow.com/questions/38987/how-do-i-merge")
    assert ctx.value == "stackoverflow.com"
    assert ctx.detail == title[:80]

def test_generic_browser_url(extractor):
    ctx = extractor.extract("Safari", "asyncio — Python docs", url="https://docs.python.org/3/library/asyncio.html")
    assert ctx.value == "docs.python.org/3/library/asyncio.html"
    assert ctx.detail == "asyncio — Python docs"

def test_long_url_path_is_truncated(extractor):
    path = "/" + "a" * 70
    ctx = extractor.extract("Firefox", "Page", url=f"https://example.com{path}")
    assert ctx.value == "example.com" + path[:47] + "..."

def test_browser_without_url_has_no_context(extractor):
    assert extractor.extract("Firefox", "New Tab") is None

def test_generic_title_fallback(extractor):
    ctx = extractor.extract("Notes", "Shopping list")
    assert ctx.kind == "other"
    assert ctx.value == "Shopping list"

def test_generic_fallback_rejects_blocklisted_and_long_titles(extractor):
    assert extractor.extract("Notes", "Untitled") is None
    assert extractor.extract("Notes", "x" * 100) is None
    assert extractor.extract("Notes", "x" * 99) is not None

def test_custom_extractor_list():
    extractor = ContextExtractor(extractors=[])
    ctx = extractor.extract("Code", "main.py - myproject - Visual Studio Code")
    assert ctx.kind == "other"
    assert ctx.value == "main.py - myproject - Visual Studio Code"

def test_deduplicate_contexts_is_case_insensitive_and_capped():
    contexts = [ExtractedContext(kind="other", value=v) for v in ["A", "b", "a", "B", "c"]]
    assert deduplicate_contexts(contexts) == ["A", "b", "c"]

    many = [ExtractedContext(kind="other", value=f"ctx-{i}") for i in range(15)]
    assert deduplicate_contexts(many) == [f"ctx-{i}" for i in range(10)]

def test_url_helpers():
    assert extract_domain("https://www.github.com/acme") == "github.com"
    assert extract_domain("not a url") is None
    assert extract_domain(None) is None
    assert are_urls_related("https://github.com/a/b", "https://gist.github.com/c")
    assert not are_urls_related("https://github.com/a/b", "https://news.ycombinator.com")

def test_is_browser():
    assert is_browser("Google Chrome")
    assert is_browser("Arc")
    assert not is_browser("Spotlight Search")
    assert not is_browser("Slack")

def test_recognized_app_without_context_is_logged(extractor, caplog):
    with caplog.at_level("DEBUG", logger="session_engine.logic.context_extractor"):
        assert extractor.extract("Terminal", "zsh") is None
    assert "No terminal context in title for Terminal" in caplog.text
